"""
Flow engine exceptions
"""
from typing import Optional


class FlowEngineError(Exception):
    """Base class for engine errors"""


class RuntimeNodeError(FlowEngineError):
    """
    Recoverable failure inside a single node (e.g. network error).

    The engine follows the node's "error" branch; without one the
    failure escalates to ExecutionFault.
    """

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.node_id = node_id


class ExecutionFault(FlowEngineError):
    """Unrecoverable failure; the execution is finalized as errored"""


class StateStoreError(ExecutionFault):
    """A persistence collaborator failed (unreachable, timed out, rejected the query)"""


class ConcurrencyConflict(FlowEngineError):
    """Lease contention or a stale versioned write"""


class CorruptStateError(StateStoreError):
    """A stored execution row could not be read back into an ExecutionState"""
