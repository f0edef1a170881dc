"""
Node transitions - what a handler tells the engine to do next
"""
from dataclasses import dataclass, field
from typing import Optional, Any, Dict
from enum import Enum

from ..models.execution import ExecutionStatus
from ..models.flow import DEFAULT_BRANCH

ERROR_BRANCH = "error"


class TransitionType(str, Enum):
    ADVANCE = "advance"
    WAIT = "wait"
    DELAY = "delay"
    TERMINATE = "terminate"


@dataclass
class NodeTransition:
    """
    Result of running one node handler.

    ADVANCE follows the edge labeled `branch`. WAIT and DELAY suspend the
    execution. TERMINATE finalizes it with `status`.
    """

    type: TransitionType = TransitionType.ADVANCE
    branch: str = DEFAULT_BRANCH

    # Wait for reply
    variable_name: Optional[str] = None
    expected_type: Optional[str] = None
    timeout_seconds: Optional[int] = None

    # Delay
    delay_seconds: int = 0

    # Terminate
    status: Optional[ExecutionStatus] = None

    # Set when the handler took its failure branch
    error: Optional[str] = None

    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def suspends(self) -> bool:
        return self.type in (TransitionType.WAIT, TransitionType.DELAY)


# ==================== FACTORY FUNCTIONS ====================

def advance(branch: str = DEFAULT_BRANCH, error: Optional[str] = None, **metadata: Any) -> NodeTransition:
    """Continue along the edge labeled branch"""
    return NodeTransition(
        type=TransitionType.ADVANCE,
        branch=branch or DEFAULT_BRANCH,
        error=error,
        metadata=metadata
    )


def wait(
    variable_name: str,
    expected_type: Optional[str] = None,
    timeout_seconds: Optional[int] = None
) -> NodeTransition:
    """Suspend until the next inbound message"""
    return NodeTransition(
        type=TransitionType.WAIT,
        variable_name=variable_name,
        expected_type=expected_type,
        timeout_seconds=timeout_seconds
    )


def delay(seconds: int) -> NodeTransition:
    """Suspend and resume automatically after `seconds`"""
    return NodeTransition(type=TransitionType.DELAY, delay_seconds=seconds)


def terminate(
    status: ExecutionStatus = ExecutionStatus.COMPLETED,
    error: Optional[str] = None
) -> NodeTransition:
    """Finalize the execution"""
    return NodeTransition(type=TransitionType.TERMINATE, status=status, error=error)
