"""
Variable scope helpers - dot-path access and {{path}} interpolation
"""
import re
import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def get_nested_value(data: Any, path: Optional[str], default: Any = MISSING) -> Any:
    """
    Get value from nested dicts/lists using dot notation.

    Example:
        >>> get_nested_value({"user": {"tags": ["a", "b"]}}, "user.tags.1")
        'b'
    """
    if data is None or not path:
        return default

    current = data
    for part in path.strip().split("."):
        if isinstance(current, dict):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return default
        else:
            return default

    return current


def set_nested_value(data: Dict[str, Any], path: str, value: Any) -> Dict[str, Any]:
    """Set value in nested dict using dot notation, creating dicts on the way"""
    if not path:
        return data

    parts = path.strip().split(".")
    current = data
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child

    current[parts[-1]] = value
    return data


def stringify(value: Any) -> str:
    """Render a scope value inside message text"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def interpolate(template: Any, scope: Dict[str, Any]) -> Any:
    """
    Replace every {{path}} with the value found in scope.

    Tokens whose path does not resolve are left untouched. Non-string
    templates are returned as-is.
    """
    if not template or not isinstance(template, str):
        return template

    def _replace(match: "re.Match[str]") -> str:
        value = get_nested_value(scope, match.group(1).strip())
        if value is MISSING:
            return match.group(0)
        return stringify(value)

    return TEMPLATE_PATTERN.sub(_replace, template)


def interpolate_value(value: Any, scope: Dict[str, Any]) -> Any:
    """Interpolate strings inside nested dicts/lists (request bodies, headers)"""
    if isinstance(value, str):
        return interpolate(value, scope)
    if isinstance(value, dict):
        return {k: interpolate_value(v, scope) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate_value(v, scope) for v in value]
    return value


class VariableContext:
    """
    Scoped view over an execution's variables.

    Wraps the mutable scope dict owned by the current stepping pass.
    """

    def __init__(self, scope: Dict[str, Any]):
        self.scope = scope

    def get(self, path: str, default: Any = None) -> Any:
        value = get_nested_value(self.scope, path)
        return default if value is MISSING else value

    def has(self, path: str) -> bool:
        return get_nested_value(self.scope, path) is not MISSING

    def set(self, path: str, value: Any) -> None:
        set_nested_value(self.scope, path, value)
        logger.debug(f"Variable set: {path} = {value!r}")

    def interpolate(self, template: Any) -> Any:
        return interpolate(template, self.scope)

    def interpolate_value(self, value: Any) -> Any:
        return interpolate_value(value, self.scope)
