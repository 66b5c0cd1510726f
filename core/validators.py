"""
Structural validation for map operations and pipeline steps.

Validators work on the raw dict form of flow configuration, never raise and
never execute anything. They are used when authoring or linting flow
configuration and by the typed parsers in core.flow_models, which refuse to
build an operation that does not validate.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

OPERATION_TAGS = ('$set', '$rename', '$unset', '$switch', '$pipeline', '$copy', '$pipe')

STEP_TAGS = (
    '$filter',
    '$objectToArray',
    '$arrayToObject',
    '$map',
    '$reduce',
    '$replace',
    '$partition',
    '$extract',
    '$mapValues',
    '$mergeFields',
)

MAP_EACH_MODES = ('capitalize', 'uppercase', 'lowercase')
REDUCE_TYPES = ('join', 'split', 'sum', 'count')


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def _result(errors: List[str]) -> ValidationResult:
    return ValidationResult(valid=not errors, errors=errors)


def _is_object(value: Any) -> bool:
    return isinstance(value, dict)


def _is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _validate_cases(cases: Any, prefix: str, errors: List[str]) -> None:
    if not isinstance(cases, list):
        errors.append(f'{prefix}.cases must be an array')
        return
    if not cases:
        errors.append(f'{prefix}.cases must have at least one case')
        return
    for i, case in enumerate(cases):
        if not _is_object(case):
            errors.append(f'{prefix}.cases[{i}] must be an object')
            continue
        if 'pattern' not in case:
            errors.append(f'{prefix}.cases[{i}] must have a "pattern" field')
        if 'value' not in case:
            errors.append(f'{prefix}.cases[{i}] must have a "value" field')


def validate_set(body: Any) -> ValidationResult:
    errors: List[str] = []
    if not _is_object(body):
        errors.append('$set must be an object')
    elif not body:
        errors.append('$set must have at least one field')
    elif any(not _is_non_empty_str(key) for key in body):
        errors.append('$set field path cannot be empty')
    return _result(errors)


def validate_rename(body: Any) -> ValidationResult:
    errors: List[str] = []
    if not _is_object(body):
        errors.append('$rename must be an object')
        return _result(errors)
    if not body:
        errors.append('$rename must have at least one mapping')
    for old, new in body.items():
        if not _is_non_empty_str(old):
            errors.append('$rename source path cannot be empty')
        if not _is_non_empty_str(new):
            errors.append(f'$rename target for "{old}" must be a non-empty string')
            continue
        if new.split('.').count('*') > old.split('.').count('*'):
            errors.append(f'$rename target "{new}" has more wildcards than source "{old}"')
    return _result(errors)


def validate_unset(body: Any) -> ValidationResult:
    errors: List[str] = []
    if isinstance(body, str):
        fields = [body]
    elif isinstance(body, list):
        fields = body
    else:
        errors.append('$unset must be a string or array of strings')
        return _result(errors)
    if not fields:
        errors.append('$unset must have at least one field')
    for path in fields:
        if not isinstance(path, str):
            errors.append('$unset field must be a string')
        elif not path.strip():
            errors.append('$unset field path cannot be empty')
    return _result(errors)


def validate_switch(body: Any) -> ValidationResult:
    errors: List[str] = []
    if not _is_object(body):
        errors.append('$switch must be an object')
        return _result(errors)
    if not _is_non_empty_str(body.get('field')):
        errors.append('$switch.field must be a non-empty string')
    _validate_cases(body.get('cases'), '$switch', errors)
    return _result(errors)


def validate_copy(body: Any) -> ValidationResult:
    errors: List[str] = []
    if not _is_object(body):
        errors.append('$copy must be an object')
        return _result(errors)
    if not _is_non_empty_str(body.get('from')):
        errors.append('$copy.from must be a non-empty string')
    if not _is_non_empty_str(body.get('to')):
        errors.append('$copy.to must be a non-empty string')
    transform = body.get('transform')
    if transform is not None:
        if not _is_object(transform):
            errors.append('$copy.transform must be an object')
        else:
            _validate_cases(transform.get('cases'), '$copy.transform', errors)
    return _result(errors)


def validate_pipe(body: Any) -> ValidationResult:
    errors: List[str] = []
    if body is None:
        errors.append('$pipe must be defined')
        return _result(errors)
    if not isinstance(body, list):
        errors.append('$pipe must be an array of transform names')
        return _result(errors)
    if not body:
        errors.append('$pipe must have at least one transform')
    for i, name in enumerate(body):
        if not isinstance(name, str):
            errors.append(f'$pipe[{i}] must be a string (transform name)')
        elif not name.strip():
            errors.append(f'$pipe[{i}] transform name cannot be empty')
    return _result(errors)


def _validate_step(step: Any, prefix: str, errors: List[str]) -> None:
    if not _is_object(step):
        errors.append(f'{prefix} must be an object')
        return
    if len(step) != 1:
        errors.append(f'{prefix} must have exactly one operation')
        return

    tag, config = next(iter(step.items()))
    if tag not in STEP_TAGS:
        errors.append(f'{prefix} has unknown operation "{tag}". Valid: {", ".join(STEP_TAGS)}')
        return
    where = f'{prefix}.{tag}'

    if tag == '$filter':
        if not _is_object(config) or not _is_object(config.get('match')):
            errors.append(f'{where}.match must be an object')

    elif tag == '$objectToArray':
        if config is not True and not _is_object(config):
            errors.append(f'{where} must be true or an object')
        elif _is_object(config) and config.get('extract', 'entries') not in ('keys', 'values', 'entries'):
            errors.append(f'{where}.extract must be one of: keys, values, entries')

    elif tag == '$arrayToObject':
        if not _is_object(config):
            errors.append(f'{where} must be an object')
        elif 'value' not in config:
            errors.append(f"{where} must have a 'value' property")

    elif tag == '$map':
        if not _is_object(config):
            errors.append(f'{where} must be an object')
            return
        has_each = 'each' in config
        has_replace = 'replace' in config
        if not has_each and not has_replace:
            errors.append(f"{where} must have either 'each' or 'replace' property")
        elif has_each and has_replace:
            errors.append(f"{where} cannot have both 'each' and 'replace' properties")
        elif has_each:
            if config['each'] not in MAP_EACH_MODES:
                errors.append(f'{where}.each must be one of: {", ".join(MAP_EACH_MODES)}')
        elif not _is_object(config['replace']):
            errors.append(f'{where}.replace must be an object (lookup table)')
        elif not config['replace']:
            errors.append(f'{where}.replace must have at least one mapping')

    elif tag == '$reduce':
        if not _is_object(config):
            errors.append(f'{where} must be an object')
        elif not config.get('type'):
            errors.append(f"{where} must have a 'type' property")
        else:
            if config['type'] not in REDUCE_TYPES:
                errors.append(f'{where}.type must be one of: {", ".join(REDUCE_TYPES)}')
            if 'separator' in config and not isinstance(config['separator'], str):
                errors.append(f'{where}.separator must be a string')

    elif tag == '$replace':
        if not _is_object(config):
            errors.append(f'{where} must be an object')
            return
        if not isinstance(config.get('pattern'), str):
            errors.append(f'{where}.pattern must be a string')
        if not isinstance(config.get('with'), str):
            errors.append(f'{where}.with must be a string')
        if 'flags' in config and not isinstance(config['flags'], str):
            errors.append(f'{where}.flags must be a string')

    elif tag == '$partition':
        if not _is_object(config):
            errors.append(f'{where} must be an object')
            return
        if config.get('by') not in ('value', 'key'):
            errors.append(f'{where}.by must be "value" or "key"')
        patterns = config.get('patterns')
        if not _is_object(patterns):
            errors.append(f'{where}.patterns must be an object')
        elif not patterns:
            errors.append(f'{where}.patterns must have at least one pattern')

    elif tag == '$extract':
        if not _is_object(config):
            errors.append(f'{where} must be an object')
            return
        if not isinstance(config.get('pattern'), str):
            errors.append(f'{where}.pattern must be a string')
        group = config.get('group', 0)
        if isinstance(group, bool) or not isinstance(group, int):
            errors.append(f'{where}.group must be a number')

    elif tag == '$mapValues':
        if not _is_object(config):
            errors.append(f'{where} must be an object')
            return
        operations = config.get('operations')
        if not isinstance(operations, list):
            errors.append(f'{where}.operations must be an array')
        elif not operations:
            errors.append(f'{where}.operations must have at least one operation')
        else:
            for j, nested in enumerate(operations):
                _validate_step(nested, f'{where}.operations[{j}]', errors)

    elif tag == '$mergeFields':
        if not _is_object(config):
            errors.append(f'{where} must be an object')
            return
        sources = config.get('from')
        if not isinstance(sources, list) or not sources:
            errors.append(f'{where}.from must be a non-empty array')
        if not isinstance(config.get('to'), str):
            errors.append(f'{where}.to must be a string')


def validate_pipeline_step(step: Any, prefix: str = '$pipeline.operations[0]') -> ValidationResult:
    errors: List[str] = []
    _validate_step(step, prefix, errors)
    return _result(errors)


def validate_pipeline(body: Any) -> ValidationResult:
    errors: List[str] = []
    if not _is_object(body):
        errors.append('$pipeline must be an object')
        return _result(errors)
    if not _is_non_empty_str(body.get('field')):
        errors.append('$pipeline.field must be a non-empty string')
    operations = body.get('operations')
    if not isinstance(operations, list):
        errors.append('$pipeline.operations must be an array')
        return _result(errors)
    if not operations:
        errors.append('$pipeline.operations must have at least one operation')
    for i, step in enumerate(operations):
        _validate_step(step, f'$pipeline.operations[{i}]', errors)
    return _result(errors)


_VALIDATORS = {
    '$set': validate_set,
    '$rename': validate_rename,
    '$unset': validate_unset,
    '$switch': validate_switch,
    '$pipeline': validate_pipeline,
    '$copy': validate_copy,
    '$pipe': validate_pipe,
}


def validate_operation(operation: Any) -> ValidationResult:
    """
    Validate one map operation in dict form.

    Returns:
        ValidationResult with every problem found (never raises)
    """
    if not _is_object(operation):
        return _result(['Operation must be an object'])
    tags = [key for key in operation if key.startswith('$')]
    if len(tags) != 1:
        return _result([f'Operation must have exactly one $-prefixed key, got {len(tags)}'])
    tag = tags[0]
    if tag not in _VALIDATORS:
        return _result([f'Unknown operation "{tag}". Valid: {", ".join(OPERATION_TAGS)}'])
    return _VALIDATORS[tag](operation[tag])


def validate_operations(operations: List[Dict[str, Any]]) -> ValidationResult:
    """Validate a whole map, prefixing each error with the operation index."""
    errors: List[str] = []
    for i, operation in enumerate(operations or []):
        result = validate_operation(operation)
        errors.extend(f'map[{i}]: {error}' for error in result.errors)
    return _result(errors)
