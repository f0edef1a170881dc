"""
Shared API dependencies
"""
from functools import lru_cache

from ..flow.executor import ExecutionEngine, create_execution_engine


@lru_cache()
def get_engine() -> ExecutionEngine:
    """Process-wide execution engine"""
    return create_execution_engine()
