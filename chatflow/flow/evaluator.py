"""
Condition Evaluator - deterministic evaluation of CONDITION rules.

Every operator is total: a missing variable, a non-numeric value or an
invalid pattern makes the rule false instead of raising.
"""
import re
import logging
from typing import Any, Dict, Callable, Optional, Union

from ..models.flow import ConditionRule
from .variables import MISSING, get_nested_value, interpolate

logger = logging.getLogger(__name__)


class ConditionEvaluator:
    """
    Evaluates a single (variable, operator, value) rule against a scope.

    Supports:
    - Equality (equals, not_equals) - case-insensitive string comparison
    - Substring checks (contains, not_contains, starts_with, ends_with)
    - Numeric comparisons (greater_than, less_than)
    - Emptiness checks (is_empty, is_not_empty)
    - Regex search (matches_regex)
    """

    # ==================== OPERATORS ====================

    OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
        "equals": lambda actual, expected: ConditionEvaluator._safe_equals(actual, expected),
        "not_equals": lambda actual, expected: not ConditionEvaluator._safe_equals(actual, expected),

        "contains": lambda actual, expected: ConditionEvaluator._safe_contains(actual, expected),
        "not_contains": lambda actual, expected: not ConditionEvaluator._safe_contains(actual, expected),

        "starts_with": lambda actual, expected: ConditionEvaluator._normalize_string(actual).startswith(
            ConditionEvaluator._normalize_string(expected)
        ),
        "ends_with": lambda actual, expected: ConditionEvaluator._normalize_string(actual).endswith(
            ConditionEvaluator._normalize_string(expected)
        ),

        "greater_than": lambda actual, expected: ConditionEvaluator._safe_compare(actual, expected, lambda a, b: a > b),
        "less_than": lambda actual, expected: ConditionEvaluator._safe_compare(actual, expected, lambda a, b: a < b),

        "is_empty": lambda actual, _: ConditionEvaluator._is_empty(actual),
        "is_not_empty": lambda actual, _: not ConditionEvaluator._is_empty(actual),

        "matches_regex": lambda actual, expected: ConditionEvaluator._safe_regex_match(actual, expected),
    }

    # Short names emitted by older editor builds
    ALIASES: Dict[str, str] = {
        "gt": "greater_than",
        "lt": "less_than",
        "regex": "matches_regex",
        "exists": "is_not_empty",
        "not_exists": "is_empty",
    }

    # ==================== EVALUATION ====================

    @classmethod
    def evaluate(
        cls,
        variable: str,
        operator: str,
        value: Any,
        scope: Dict[str, Any]
    ) -> bool:
        """
        Evaluate a condition against the variable scope.

        Args:
            variable: Dot path of the variable to read from scope
            operator: Operator name (aliases accepted)
            value: Value to compare against; strings may contain {{path}} tokens
            scope: Execution variables

        Example:
            >>> ConditionEvaluator.evaluate("plan", "equals", "PRO", {"plan": "pro"})
            True
        """
        actual = get_nested_value(scope, variable)
        if actual is MISSING:
            actual = None

        expected = interpolate(value, scope) if isinstance(value, str) else value

        normalized = cls.normalize_operator(operator)
        operator_func = cls.OPERATORS.get(normalized)
        if operator_func is None:
            logger.warning(f"Unknown operator: '{operator}' - rule evaluates to false")
            return False

        try:
            result = bool(operator_func(actual, expected))
        except (TypeError, ValueError) as e:
            logger.error(
                f"Error evaluating condition: variable='{variable}', operator='{operator}', "
                f"value={expected!r}, error={e}"
            )
            return False

        logger.debug(
            f"Condition evaluated: variable='{variable}', actual={actual!r}, "
            f"operator='{normalized}', value={expected!r} -> {result}"
        )
        return result

    @classmethod
    def evaluate_rule(
        cls,
        rule: Union[ConditionRule, Dict[str, Any]],
        scope: Dict[str, Any]
    ) -> bool:
        """Evaluate a ConditionRule (or its raw dict form)"""
        if isinstance(rule, dict):
            rule = ConditionRule.model_validate(rule)
        return cls.evaluate(rule.variable, rule.operator, rule.value, scope)

    @classmethod
    def normalize_operator(cls, operator: Optional[str]) -> str:
        if not operator:
            return ""
        name = operator.strip().lower().replace(" ", "_").replace("-", "_")
        return cls.ALIASES.get(name, name)

    # ==================== HELPERS ====================

    @staticmethod
    def _normalize_string(value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip().lower()

    @staticmethod
    def _coerce_to_number(value: Any) -> Optional[float]:
        """Coerce to float; None when the value is not numeric"""
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                return None
        return None

    @staticmethod
    def _is_empty(value: Any) -> bool:
        """Missing, falsy, or a whitespace-only string"""
        if isinstance(value, str):
            return not value.strip()
        return not value

    @classmethod
    def _safe_equals(cls, actual: Any, expected: Any) -> bool:
        return cls._normalize_string(actual) == cls._normalize_string(expected)

    @classmethod
    def _safe_contains(cls, actual: Any, expected: Any) -> bool:
        if isinstance(actual, (list, tuple, set)):
            needle = cls._normalize_string(expected)
            return any(cls._normalize_string(item) == needle for item in actual)
        return cls._normalize_string(expected) in cls._normalize_string(actual)

    @classmethod
    def _safe_compare(
        cls,
        actual: Any,
        expected: Any,
        comparator: Callable[[float, float], bool]
    ) -> bool:
        actual_num = cls._coerce_to_number(actual)
        expected_num = cls._coerce_to_number(expected)
        if actual_num is None or expected_num is None:
            return False
        return comparator(actual_num, expected_num)

    @staticmethod
    def _safe_regex_match(actual: Any, pattern: Any) -> bool:
        if pattern is None:
            return False
        text = "" if actual is None else str(actual)
        try:
            return re.search(str(pattern), text, re.IGNORECASE) is not None
        except re.error as e:
            logger.warning(f"Invalid regex pattern '{pattern}': {e}")
            return False


# Singleton
evaluator = ConditionEvaluator()


def evaluate_condition(
    rule: Union[ConditionRule, Dict[str, Any]],
    scope: Dict[str, Any]
) -> bool:
    """Convenience wrapper around ConditionEvaluator.evaluate_rule"""
    return ConditionEvaluator.evaluate_rule(rule, scope)
