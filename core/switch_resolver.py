"""
$switch expressions in flow targets.

A flow's "to" may choose its destination from context variables:

    "to": {
      "$switch": {
        "field": "$$targetRoot",
        "cases": [{"pattern": "~/", "value": ".config/opencode/agent/{name}.md"}],
        "default": ".opencode/agent/{name}.md"
      }
    }

Unlike the $switch map operation, a target expression must produce a value:
no match and no default is an error.
"""

import os
from typing import Any, Dict

from .errors import ValidationError
from .path_utils import deep_equal, glob_match
from .validators import ValidationResult
from .variables import is_variable_reference, resolve_value

_GLOB_CHARS = set('*?[]{}')


def is_switch_expression(value: Any) -> bool:
    return isinstance(value, dict) and '$switch' in value


def is_path_like(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return (
        '/' in value
        or '\\' in value
        or value.startswith('~')
        or (len(value) > 1 and value[1] == ':' and value[0].isalpha())
    )


def _normalize(path: str) -> str:
    return os.path.normpath(os.path.expanduser(path))


def smart_equals(left: Any, right: Any) -> bool:
    """Equality that treats path-like strings as paths (~ expanded, normalized)."""
    if is_path_like(left) or is_path_like(right):
        return _normalize(str(left)) == _normalize(str(right))
    return left == right


def _matches(value: Any, pattern: Any) -> bool:
    if isinstance(pattern, dict):
        return deep_equal(value, pattern)
    if isinstance(pattern, str) and any(ch in _GLOB_CHARS for ch in pattern):
        return glob_match(_normalize(str(value)), _normalize(pattern))
    return smart_equals(value, pattern)


def resolve_switch_expression(expression: Dict[str, Any], variables: Dict[str, Any]) -> str:
    """
    Evaluate a target $switch expression.

    Raises:
        ValidationError: If a referenced variable is unbound, or nothing matches
            and there is no default
    """
    body = expression['$switch']
    field = body.get('field')
    if is_variable_reference(field):
        value = resolve_value(field, variables, strict=True)
    else:
        value = field

    for case in body.get('cases', []):
        if _matches(value, case.get('pattern')):
            return case.get('value')

    if 'default' in body:
        return body['default']

    raise ValidationError(
        f"No matching case in $switch expression for {field}={value!r}, and no default provided"
    )


def validate_switch_expression(expression: Any) -> ValidationResult:
    errors = []
    if not isinstance(expression, dict) or '$switch' not in expression:
        return ValidationResult(valid=False, errors=['Switch expression must have $switch property'])

    body = expression['$switch'] or {}
    field = body.get('field')
    if not field:
        errors.append('Switch expression missing required field: field')
    elif not isinstance(field, str):
        errors.append('Switch expression field must be a string')

    cases = body.get('cases')
    if cases is None:
        errors.append('Switch expression missing required field: cases')
    elif not isinstance(cases, list):
        errors.append('Switch expression cases must be an array')
    elif not cases:
        errors.append('Switch expression must have at least one case')
    else:
        for index, case in enumerate(cases):
            if not isinstance(case, dict):
                errors.append(f'Case at index {index} must be an object')
                continue
            if 'pattern' not in case:
                errors.append(f'Case at index {index} missing required field: pattern')
            if 'value' not in case:
                errors.append(f'Case at index {index} missing required field: value')
            elif not isinstance(case['value'], str):
                errors.append(f'Case at index {index} value must be a string')

    if 'default' in body and not isinstance(body['default'], str):
        errors.append('Switch expression default must be a string')

    return ValidationResult(valid=not errors, errors=errors)
