"""
Flow Module - resumable flow execution

- Execution engine (idempotent, lease-guarded stepping passes)
- Node handler registry keyed by node type
- Variable interpolation and condition evaluation
- Trigger matching and graph validation
"""

from .executor import ExecutionEngine, InboundOutcome, create_execution_engine
from .evaluator import ConditionEvaluator, evaluator, evaluate_condition
from .variables import VariableContext, interpolate, get_nested_value, set_nested_value
from .trigger import TriggerMatcher, trigger_matcher
from .validator import FlowValidator, FlowValidationError
from .context import ExecutionContext
from .handlers import HANDLERS, register_handler, get_handler
from .result import (
    NodeTransition,
    TransitionType,
    advance,
    wait,
    delay,
    terminate
)
from .errors import (
    FlowEngineError,
    RuntimeNodeError,
    ExecutionFault,
    StateStoreError,
    CorruptStateError,
    ConcurrencyConflict
)

__all__ = [
    # Engine
    "ExecutionEngine",
    "InboundOutcome",
    "create_execution_engine",

    # Variables / conditions
    "VariableContext",
    "interpolate",
    "get_nested_value",
    "set_nested_value",
    "ConditionEvaluator",
    "evaluator",
    "evaluate_condition",

    # Trigger / validation
    "TriggerMatcher",
    "trigger_matcher",
    "FlowValidator",
    "FlowValidationError",

    # Handlers
    "ExecutionContext",
    "HANDLERS",
    "register_handler",
    "get_handler",
    "NodeTransition",
    "TransitionType",
    "advance",
    "wait",
    "delay",
    "terminate",

    # Errors
    "FlowEngineError",
    "RuntimeNodeError",
    "ExecutionFault",
    "StateStoreError",
    "CorruptStateError",
    "ConcurrencyConflict",
]
