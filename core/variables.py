"""
Context variable resolution.

Flow configuration refers to runtime values with a "$$" prefix:

    {"$set": {"target": "$$platform"}}
    {"when": {"$eq": ["$$source", "claude-plugin"]}}

Known names are listed in ContextVariable; anything else is looked up in the
flow context's user variables. All "$$" lookups go through resolve_value.
"""

from enum import Enum
from typing import Any, Dict, Optional

from .errors import ValidationError

VARIABLE_PREFIX = '$$'


class ContextVariable(str, Enum):
    """Variables every flow context binds."""
    PLATFORM = "platform"
    SOURCE = "source"
    SOURCE_PLATFORM = "sourcePlatform"
    TARGET_PLATFORM = "targetPlatform"
    NAME = "name"
    VERSION = "version"
    PACKAGE_NAME = "packageName"
    DIRECTION = "direction"


def is_variable_reference(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(VARIABLE_PREFIX) and len(value) > 2


def variable_name(reference: str) -> str:
    return reference[len(VARIABLE_PREFIX):]


def resolve_value(value: Any, variables: Optional[Dict[str, Any]], strict: bool = False) -> Any:
    """
    Resolve "$$name" references in value.

    Dicts and lists are resolved recursively; other values pass through.

    Args:
        value: Literal or "$$"-reference
        variables: Bound variables (known and user-defined)
        strict: Raise when a reference is unbound instead of keeping it

    Raises:
        ValidationError: If strict and a referenced variable is not bound
    """
    variables = variables or {}
    if is_variable_reference(value):
        name = variable_name(value)
        if name in variables:
            return variables[name]
        if strict:
            raise ValidationError(f"Variable '{name}' not found in flow context")
        return value
    if isinstance(value, dict):
        return {key: resolve_value(item, variables, strict) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_value(item, variables, strict) for item in value]
    return value


def build_variables(
    platform: str,
    package_name: str,
    direction: str = 'install',
    source_platform: Optional[str] = None,
    version: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Bind the known context variables, then overlay user variables."""
    source = source_platform or 'openpackage'
    variables: Dict[str, Any] = {
        ContextVariable.PLATFORM.value: platform,
        ContextVariable.TARGET_PLATFORM.value: platform,
        ContextVariable.SOURCE.value: source,
        ContextVariable.SOURCE_PLATFORM.value: source,
        ContextVariable.NAME.value: package_name,
        ContextVariable.PACKAGE_NAME.value: package_name,
        ContextVariable.VERSION.value: version or '0.0.0',
        ContextVariable.DIRECTION.value: direction,
    }
    if extra:
        variables.update(extra)
    return variables
