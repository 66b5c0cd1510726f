"""
Map pipeline: the document transformation DSL used by flows.

A map is an ordered list of operations, each consuming and returning a whole
document:

- $set: assign values at dot paths ("$$" references resolve from context)
- $rename: move values, with "*" segments expanding over existing keys
- $unset: delete paths (missing paths are a no-op)
- $switch: replace a field's value by first matching case
- $pipeline: run value-level steps over one field (see core.pipeline_steps)
- $copy: copy a value to another path, optionally through switch cases
- $pipe: hand the whole document to named transforms

Operations never fabricate fields: $switch and $pipeline on an absent field
leave the document unchanged. The caller's document is never mutated.
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from .errors import TransformExecutionError
from .flow_models import (
    CopyOp,
    Operation,
    PipeOp,
    PipelineOp,
    RenameOp,
    SetOp,
    SwitchCase,
    SwitchOp,
    UnsetOp,
    parse_operation,
)
from .path_utils import (
    delete_nested_value,
    fill_wildcards,
    get_nested_value,
    has_nested_value,
    match_pattern,
    prune_empty_parents,
    resolve_wildcard_matches,
    resolve_wildcard_paths,
    set_nested_value,
)
from .pipeline_steps import run_steps
from .variables import resolve_value

logger = logging.getLogger(__name__)


def _select_case(value: Any, cases: Sequence[SwitchCase], default: Any, has_default: bool) -> Any:
    for case in cases:
        if match_pattern(value, case.pattern):
            return case.value
    if has_default:
        return default
    return value


def _execute_set(document: Dict[str, Any], op: SetOp, variables: Dict[str, Any]) -> Dict[str, Any]:
    for path, value in op.fields.items():
        set_nested_value(document, path, resolve_value(copy.deepcopy(value), variables))
    return document


def _execute_rename(document: Dict[str, Any], op: RenameOp) -> Dict[str, Any]:
    for old_path, new_path in op.mapping.items():
        if '*' not in old_path:
            if not has_nested_value(document, old_path):
                continue
            value = get_nested_value(document, old_path)
            delete_nested_value(document, old_path)
            set_nested_value(document, new_path, value)
            continue

        moves = []
        for concrete, bound in resolve_wildcard_matches(document, old_path):
            moves.append((concrete, fill_wildcards(new_path, bound), get_nested_value(document, concrete)))
        for concrete, _, _ in moves:
            delete_nested_value(document, concrete)
            prune_empty_parents(document, concrete)
        for _, target, value in moves:
            set_nested_value(document, target, value)
    return document


def _execute_unset(document: Dict[str, Any], op: UnsetOp) -> Dict[str, Any]:
    for path in op.paths:
        for concrete in resolve_wildcard_paths(document, path):
            delete_nested_value(document, concrete)
    return document


def _execute_switch(document: Dict[str, Any], op: SwitchOp) -> Dict[str, Any]:
    if not has_nested_value(document, op.field):
        return document
    current = get_nested_value(document, op.field)
    for case in op.cases:
        if match_pattern(current, case.pattern):
            set_nested_value(document, op.field, copy.deepcopy(case.value))
            return document
    if op.has_default:
        set_nested_value(document, op.field, copy.deepcopy(op.default))
    return document


def _execute_pipeline(document: Dict[str, Any], op: PipelineOp, variables: Dict[str, Any]) -> Dict[str, Any]:
    if '*' in op.field:
        paths = resolve_wildcard_paths(document, op.field)
    else:
        paths = [op.field] if has_nested_value(document, op.field) else []

    for path in paths:
        value = run_steps(get_nested_value(document, path), op.operations, variables)
        if value == '' or value == []:
            delete_nested_value(document, path)
        else:
            set_nested_value(document, path, value)
    return document


def _execute_copy(document: Dict[str, Any], op: CopyOp) -> Dict[str, Any]:
    if not has_nested_value(document, op.from_):
        return document
    value = copy.deepcopy(get_nested_value(document, op.from_))
    if op.transform is not None:
        value = _select_case(value, op.transform.cases, op.transform.default, op.transform.has_default)
    set_nested_value(document, op.to, value)
    return document


def _execute_pipe(document: Any, op: PipeOp, registry) -> Any:
    if registry is None:
        raise TransformExecutionError("$pipe requires a transform registry")
    result = document
    for name in op.names:
        try:
            result = registry.execute(name, result)
        except Exception as e:
            cause = e.__cause__ or e
            raise TransformExecutionError(f"$pipe transform '{name}' failed: {cause}", transform_name=name) from e
    return result


def apply_operation(document: Any, operation: Operation,
                    variables: Optional[Dict[str, Any]] = None, registry=None) -> Any:
    """
    Apply one operation to a copy of document.

    Args:
        document: Input document (not modified)
        operation: Typed operation
        variables: Flow context variables for "$$" references
        registry: Transform registry (needed by $pipe only)

    Returns:
        The transformed document
    """
    variables = variables or {}
    if isinstance(operation, PipeOp):
        return _execute_pipe(document, operation, registry)

    if not isinstance(document, dict):
        logger.debug("Skipping %s on non-object document", operation.tag)
        return document
    result = copy.deepcopy(document)

    if isinstance(operation, SetOp):
        return _execute_set(result, operation, variables)
    if isinstance(operation, RenameOp):
        return _execute_rename(result, operation)
    if isinstance(operation, UnsetOp):
        return _execute_unset(result, operation)
    if isinstance(operation, SwitchOp):
        return _execute_switch(result, operation)
    if isinstance(operation, PipelineOp):
        return _execute_pipeline(result, operation, variables)
    if isinstance(operation, CopyOp):
        return _execute_copy(result, operation)
    raise TypeError(f"Unhandled map operation: {type(operation).__name__}")


def apply_map_pipeline(document: Any,
                       operations: Sequence[Union[Operation, Dict[str, Any]]],
                       variables: Optional[Dict[str, Any]] = None,
                       registry=None) -> Any:
    """
    Run a document through an ordered list of operations.

    Dict-form operations are parsed (and validated) first.

    Raises:
        ValidationError: If a dict-form operation is malformed
        TransformExecutionError: If a $pipe transform fails
    """
    typed: List[Operation] = [
        parse_operation(op) if isinstance(op, dict) else op for op in operations
    ]
    result = document
    for operation in typed:
        result = apply_operation(result, operation, variables, registry)
    return result
