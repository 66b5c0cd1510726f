"""
Value-level steps run inside a $pipeline operation.

Each step takes the current value of one field and returns the new value.
Steps are lenient about input shape: a step that does not apply to the value
it receives (e.g. $filter on a list) returns the value unchanged rather than
failing, so a pipeline can run over heterogeneous documents.

Regular expressions in flow configuration use JavaScript-style syntax and
flags ("g", "i", "m", "s") with "$1"/"$<name>" back-references, since flow
files are shared with non-Python tooling. compile_pattern and
expand_replacement bridge that to the re module.
"""

import re
from typing import Any, Dict, List, Optional, Sequence

from .flow_models import (
    ArrayToObjectStep,
    ExtractStep,
    FilterStep,
    MapStep,
    MapValuesStep,
    MergeFieldsStep,
    ObjectToArrayStep,
    PartitionStep,
    PipelineStep,
    ReduceStep,
    ReplaceStep,
)
from .path_utils import deep_equal
from .variables import resolve_value

SELF_SENTINEL = '$SELF'

_FLAG_MAP = {
    'i': re.IGNORECASE,
    'm': re.MULTILINE,
    's': re.DOTALL,
}
_NAMED_GROUP = re.compile(r'\(\?<([A-Za-z_]\w*)>')
_REPLACEMENT_TOKEN = re.compile(r'\$(\$|&|\d{1,2}|<[A-Za-z_]\w*>)')


def compile_pattern(pattern: str, flags: str = '') -> 're.Pattern':
    """Compile a JavaScript-style regex with its flag string."""
    re_flags = 0
    for flag in flags or '':
        re_flags |= _FLAG_MAP.get(flag, 0)
    return re.compile(_NAMED_GROUP.sub(r'(?P<\1>', pattern), re_flags)


def expand_replacement(template: str, match: 're.Match') -> str:
    """Expand "$1", "$<name>", "$&" and "$$" in a replacement template."""
    def substitute(token: 're.Match') -> str:
        ref = token.group(1)
        if ref == '$':
            return '$'
        if ref == '&':
            return match.group(0)
        if ref.startswith('<'):
            return match.group(ref[1:-1]) or ''
        index = int(ref)
        if index > (match.re.groups or 0):
            return token.group(0)
        return match.group(index) or ''

    return _REPLACEMENT_TOKEN.sub(substitute, template)


def to_display_string(value: Any) -> str:
    """String form used for regex tests (true/false/null like JSON)."""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return 'null'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ','.join(to_display_string(item) for item in value)
    return str(value)


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return 0
    return int(number) if number.is_integer() else number


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

def _filter(value: Any, step: FilterStep) -> Any:
    if not isinstance(value, dict):
        return value
    match = step.match
    kept = {}
    for key, item in value.items():
        if 'value' in match and not deep_equal(item, match['value']):
            continue
        if 'key' in match and key != match['key']:
            continue
        kept[key] = item
    return kept


def _object_to_array(value: Any, step: ObjectToArrayStep) -> List[Any]:
    if not isinstance(value, dict):
        return []
    extract = step.extract or 'entries'
    if extract == 'keys':
        return list(value.keys())
    if extract == 'values':
        return list(value.values())
    return [[key, item] for key, item in value.items()]


def _array_to_object(value: Any, step: ArrayToObjectStep, variables: Dict[str, Any]) -> Any:
    if not isinstance(value, list):
        return value
    resolved = resolve_value(step.value, variables)
    return {item: resolved for item in value if isinstance(item, str)}


def _map(value: Any, step: MapStep) -> Any:
    if not isinstance(value, list):
        return value

    def transform(item: Any) -> Any:
        if not isinstance(item, str):
            return item
        if step.replace is not None:
            return step.replace.get(item) or item
        if step.each == 'capitalize':
            return item[:1].upper() + item[1:]
        if step.each == 'uppercase':
            return item.upper()
        if step.each == 'lowercase':
            return item.lower()
        return item

    return [transform(item) for item in value]


def _reduce(value: Any, step: ReduceStep) -> Any:
    separator = step.separator if step.separator is not None else ''
    if step.type == 'join':
        if not isinstance(value, list):
            return value
        return separator.join(to_display_string(item) for item in value)
    if step.type == 'split':
        if not isinstance(value, str):
            return value
        parts = value.split(separator) if separator else list(value)
        return [part.strip() for part in parts if part.strip()]
    if step.type == 'sum':
        if not isinstance(value, list):
            return value
        return sum(_to_number(item) for item in value)
    if step.type == 'count':
        return len(value) if isinstance(value, list) else 0
    return value


def _replace(value: Any, step: ReplaceStep) -> Any:
    if not isinstance(value, str):
        return value
    regex = compile_pattern(step.pattern, step.flags)
    count = 0 if 'g' in (step.flags or '') else 1
    return regex.sub(lambda m: expand_replacement(step.with_, m), value, count=count)


def _partition(value: Any, step: PartitionStep) -> Any:
    if not isinstance(value, dict):
        return value
    compiled = [(bucket, compile_pattern(pattern)) for bucket, pattern in step.patterns.items()]
    buckets: Dict[str, Dict[str, Any]] = {}
    for key, item in value.items():
        subject = key if step.by == 'key' else to_display_string(item)
        for bucket, regex in compiled:
            if regex.search(subject):
                buckets.setdefault(bucket, {})[key] = item
                break
    return buckets


def _extract(value: Any, step: ExtractStep) -> Any:
    if not isinstance(value, str):
        return value
    keep_original = not step.has_default or step.default == SELF_SENTINEL
    match = compile_pattern(step.pattern).search(value)
    if match is None:
        return value if keep_original else step.default
    try:
        extracted: Optional[str] = match.group(step.group)
    except IndexError:
        extracted = None
    if extracted is None:
        return value if keep_original else step.default
    return extracted


def _map_values(value: Any, step: MapValuesStep, variables: Dict[str, Any]) -> Any:
    if not isinstance(value, dict):
        return value
    return {key: run_steps(item, step.operations, variables) for key, item in value.items()}


def _merge_fields(value: Any, step: MergeFieldsStep) -> Any:
    if not isinstance(value, dict):
        return value
    merged: Dict[str, Any] = {}
    for source in step.from_:
        part = value.get(source)
        if isinstance(part, dict):
            merged.update(part)
    result = dict(value)
    if step.remove:
        for source in step.from_:
            result.pop(source, None)
    if merged:
        result[step.to] = merged
    return result


def apply_step(value: Any, step: PipelineStep, variables: Optional[Dict[str, Any]] = None) -> Any:
    """Apply a single pipeline step to a value."""
    variables = variables or {}
    if isinstance(step, FilterStep):
        return _filter(value, step)
    if isinstance(step, ObjectToArrayStep):
        return _object_to_array(value, step)
    if isinstance(step, ArrayToObjectStep):
        return _array_to_object(value, step, variables)
    if isinstance(step, MapStep):
        return _map(value, step)
    if isinstance(step, ReduceStep):
        return _reduce(value, step)
    if isinstance(step, ReplaceStep):
        return _replace(value, step)
    if isinstance(step, PartitionStep):
        return _partition(value, step)
    if isinstance(step, ExtractStep):
        return _extract(value, step)
    if isinstance(step, MapValuesStep):
        return _map_values(value, step, variables)
    if isinstance(step, MergeFieldsStep):
        return _merge_fields(value, step)
    raise TypeError(f"Unhandled pipeline step: {type(step).__name__}")


def run_steps(value: Any, steps: Sequence[PipelineStep], variables: Optional[Dict[str, Any]] = None) -> Any:
    """Run steps in order, feeding each result to the next."""
    for step in steps:
        value = apply_step(value, step, variables)
    return value
