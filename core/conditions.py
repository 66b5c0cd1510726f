"""
Evaluation of a flow's "when" condition.

Supported forms:
- {"exists": "AGENTS.md"}: path exists relative to the workspace root
- {"platform": "cursor"}: the flow runs for this platform (string or list)
- {"$eq": [a, b]} / {"$ne": [a, b]}: operands may be "$$" references
- {"$and": [...]} / {"$or": [...]} / {"$not": condition}

A flow whose condition is false is skipped before any file is touched.
"""

from typing import Any, Dict

from .errors import ValidationError
from .flow_models import FlowContext
from .path_utils import deep_equal
from .variables import resolve_value


def evaluate_condition(condition: Any, context: FlowContext) -> bool:
    """
    Evaluate a condition against a flow context.

    None (no condition) is true.

    Raises:
        ValidationError: If the condition has an unknown shape
    """
    if condition is None:
        return True
    if isinstance(condition, bool):
        return condition
    if not isinstance(condition, dict) or not condition:
        raise ValidationError(f"Invalid flow condition: {condition!r}")

    # Several keys in one object are implicitly and-ed
    if len(condition) > 1:
        return all(evaluate_condition({key: value}, context) for key, value in condition.items())

    key, operand = next(iter(condition.items()))
    variables: Dict[str, Any] = context.variables

    if key == 'exists':
        target = resolve_value(operand, variables)
        return (context.workspace_root / str(target)).exists()
    if key == 'platform':
        platforms = operand if isinstance(operand, list) else [operand]
        return context.platform in platforms
    if key in ('$eq', '$ne'):
        if not isinstance(operand, list) or len(operand) != 2:
            raise ValidationError(f"{key} expects a list of two operands")
        left, right = (resolve_value(item, variables) for item in operand)
        equal = deep_equal(left, right)
        return equal if key == '$eq' else not equal
    if key == '$and':
        return all(evaluate_condition(item, context) for item in operand)
    if key == '$or':
        return any(evaluate_condition(item, context) for item in operand)
    if key == '$not':
        return not evaluate_condition(operand, context)

    raise ValidationError(f"Unknown condition operator: {key}")
