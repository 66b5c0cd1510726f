"""
Data model for flows, map operations and execution results.

A flow is a declarative rule moving files from a source pattern to a target
pattern, optionally reshaping documents on the way:

    {
      "from": "rules/{name}.md",
      "to": ".cursor/rules/{name}.mdc",
      "map": [{"$rename": {"globs": "paths"}}],
      "pipe": ["filter-empty"],
      "merge": "deep",
      "when": {"platform": "cursor"}
    }

Operations and pipeline steps are tagged variants: one frozen dataclass per
"$" tag, built from plain dicts with parse_operation/parse_pipeline_step and
rendered back with to_dict(). The executor dispatches on the class.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ValidationError
from .validators import validate_operation, validate_pipeline_step


class MergeStrategy(str, Enum):
    """How a flow's output combines with existing target content."""
    REPLACE = "replace"
    DEEP = "deep"
    SHALLOW = "shallow"
    COMPOSITE = "composite"


class FlowDirection(str, Enum):
    INSTALL = "install"
    SAVE = "save"


# ---------------------------------------------------------------------------
# Map operations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SwitchCase:
    pattern: Any
    value: Any


@dataclass(frozen=True)
class SetOp:
    fields: Dict[str, Any]
    tag = "$set"

    def to_dict(self) -> Dict[str, Any]:
        return {self.tag: dict(self.fields)}


@dataclass(frozen=True)
class RenameOp:
    mapping: Dict[str, str]
    tag = "$rename"

    def to_dict(self) -> Dict[str, Any]:
        return {self.tag: dict(self.mapping)}


@dataclass(frozen=True)
class UnsetOp:
    paths: Tuple[str, ...]
    tag = "$unset"

    def to_dict(self) -> Dict[str, Any]:
        if len(self.paths) == 1:
            return {self.tag: self.paths[0]}
        return {self.tag: list(self.paths)}


@dataclass(frozen=True)
class SwitchOp:
    field: str
    cases: Tuple[SwitchCase, ...]
    default: Any = None
    has_default: bool = False
    tag = "$switch"

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            'field': self.field,
            'cases': [{'pattern': c.pattern, 'value': c.value} for c in self.cases],
        }
        if self.has_default:
            body['default'] = self.default
        return {self.tag: body}


@dataclass(frozen=True)
class PipelineOp:
    field: str
    operations: Tuple['PipelineStep', ...]
    tag = "$pipeline"

    def to_dict(self) -> Dict[str, Any]:
        return {self.tag: {
            'field': self.field,
            'operations': [step.to_dict() for step in self.operations],
        }}


@dataclass(frozen=True)
class CopyTransform:
    cases: Tuple[SwitchCase, ...]
    default: Any = None
    has_default: bool = False

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            'cases': [{'pattern': c.pattern, 'value': c.value} for c in self.cases],
        }
        if self.has_default:
            body['default'] = self.default
        return body


@dataclass(frozen=True)
class CopyOp:
    from_: str
    to: str
    transform: Optional[CopyTransform] = None
    tag = "$copy"

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'from': self.from_, 'to': self.to}
        if self.transform is not None:
            body['transform'] = self.transform.to_dict()
        return {self.tag: body}


@dataclass(frozen=True)
class PipeOp:
    names: Tuple[str, ...]
    tag = "$pipe"

    def to_dict(self) -> Dict[str, Any]:
        return {self.tag: list(self.names)}


Operation = Union[SetOp, RenameOp, UnsetOp, SwitchOp, PipelineOp, CopyOp, PipeOp]


# ---------------------------------------------------------------------------
# Pipeline steps (inside $pipeline)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FilterStep:
    match: Dict[str, Any]
    tag = "$filter"

    def to_dict(self) -> Dict[str, Any]:
        return {self.tag: {'match': dict(self.match)}}


@dataclass(frozen=True)
class ObjectToArrayStep:
    extract: Optional[str] = None
    tag = "$objectToArray"

    def to_dict(self) -> Dict[str, Any]:
        if self.extract is None:
            return {self.tag: True}
        return {self.tag: {'extract': self.extract}}


@dataclass(frozen=True)
class ArrayToObjectStep:
    value: Any
    tag = "$arrayToObject"

    def to_dict(self) -> Dict[str, Any]:
        return {self.tag: {'value': self.value}}


@dataclass(frozen=True)
class MapStep:
    each: Optional[str] = None
    replace: Optional[Dict[str, Any]] = None
    tag = "$map"

    def to_dict(self) -> Dict[str, Any]:
        if self.replace is not None:
            return {self.tag: {'replace': dict(self.replace)}}
        return {self.tag: {'each': self.each}}


@dataclass(frozen=True)
class ReduceStep:
    type: str
    separator: Optional[str] = None
    tag = "$reduce"

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'type': self.type}
        if self.separator is not None:
            body['separator'] = self.separator
        return {self.tag: body}


@dataclass(frozen=True)
class ReplaceStep:
    pattern: str
    with_: str
    flags: str = ""
    tag = "$replace"

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'pattern': self.pattern, 'with': self.with_}
        if self.flags:
            body['flags'] = self.flags
        return {self.tag: body}


@dataclass(frozen=True)
class PartitionStep:
    by: str
    patterns: Dict[str, str]
    tag = "$partition"

    def to_dict(self) -> Dict[str, Any]:
        return {self.tag: {'by': self.by, 'patterns': dict(self.patterns)}}


@dataclass(frozen=True)
class ExtractStep:
    pattern: str
    group: int = 0
    default: Any = None
    has_default: bool = False
    tag = "$extract"

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'pattern': self.pattern, 'group': self.group}
        if self.has_default:
            body['default'] = self.default
        return {self.tag: body}


@dataclass(frozen=True)
class MapValuesStep:
    operations: Tuple['PipelineStep', ...]
    tag = "$mapValues"

    def to_dict(self) -> Dict[str, Any]:
        return {self.tag: {'operations': [step.to_dict() for step in self.operations]}}


@dataclass(frozen=True)
class MergeFieldsStep:
    from_: Tuple[str, ...]
    to: str
    remove: bool = True
    tag = "$mergeFields"

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'from': list(self.from_), 'to': self.to}
        if not self.remove:
            body['remove'] = False
        return {self.tag: body}


PipelineStep = Union[
    FilterStep, ObjectToArrayStep, ArrayToObjectStep, MapStep, ReduceStep,
    ReplaceStep, PartitionStep, ExtractStep, MapValuesStep, MergeFieldsStep,
]


def _single_tag(raw: Any, kind: str) -> Tuple[str, Any]:
    if not isinstance(raw, dict):
        raise ValidationError(f"{kind} must be an object")
    tags = [key for key in raw if key.startswith('$')]
    if len(tags) != 1:
        raise ValidationError(f"{kind} must have exactly one $-prefixed key, got {sorted(raw)}")
    return tags[0], raw[tags[0]]


def _parse_cases(raw_cases: List[Dict[str, Any]]) -> Tuple[SwitchCase, ...]:
    return tuple(SwitchCase(pattern=c.get('pattern'), value=c.get('value')) for c in raw_cases)


def parse_pipeline_step(raw: Dict[str, Any]) -> PipelineStep:
    """
    Build a typed pipeline step from its dict form.

    Raises:
        ValidationError: If the step is unknown or malformed
    """
    result = validate_pipeline_step(raw)
    if not result.valid:
        raise ValidationError(f"Invalid pipeline step: {'; '.join(result.errors)}", result.errors)

    tag, body = _single_tag(raw, "Pipeline step")
    if tag == '$filter':
        return FilterStep(match=dict(body['match']))
    if tag == '$objectToArray':
        if body is True:
            return ObjectToArrayStep()
        return ObjectToArrayStep(extract=body.get('extract', 'entries'))
    if tag == '$arrayToObject':
        return ArrayToObjectStep(value=body.get('value'))
    if tag == '$map':
        return MapStep(each=body.get('each'), replace=body.get('replace'))
    if tag == '$reduce':
        return ReduceStep(type=body['type'], separator=body.get('separator'))
    if tag == '$replace':
        return ReplaceStep(pattern=body['pattern'], with_=body.get('with', ''), flags=body.get('flags', ''))
    if tag == '$partition':
        return PartitionStep(by=body['by'], patterns=dict(body['patterns']))
    if tag == '$extract':
        return ExtractStep(
            pattern=body['pattern'],
            group=body.get('group', 0),
            default=body.get('default'),
            has_default='default' in body,
        )
    if tag == '$mapValues':
        return MapValuesStep(operations=tuple(parse_pipeline_step(s) for s in body['operations']))
    if tag == '$mergeFields':
        return MergeFieldsStep(
            from_=tuple(body['from']),
            to=body['to'],
            remove=body.get('remove', True),
        )
    raise ValidationError(f"Unknown pipeline step: {tag}")


def parse_operation(raw: Dict[str, Any]) -> Operation:
    """
    Build a typed map operation from its dict form.

    Raises:
        ValidationError: If the operation is unknown or malformed
    """
    result = validate_operation(raw)
    if not result.valid:
        raise ValidationError(f"Invalid map operation: {'; '.join(result.errors)}", result.errors)

    tag, body = _single_tag(raw, "Map operation")
    if tag == '$set':
        return SetOp(fields=dict(body))
    if tag == '$rename':
        return RenameOp(mapping=dict(body))
    if tag == '$unset':
        paths = (body,) if isinstance(body, str) else tuple(body)
        return UnsetOp(paths=paths)
    if tag == '$switch':
        return SwitchOp(
            field=body['field'],
            cases=_parse_cases(body['cases']),
            default=body.get('default'),
            has_default='default' in body,
        )
    if tag == '$pipeline':
        return PipelineOp(
            field=body['field'],
            operations=tuple(parse_pipeline_step(s) for s in body['operations']),
        )
    if tag == '$copy':
        transform = None
        if body.get('transform') is not None:
            raw_transform = body['transform']
            transform = CopyTransform(
                cases=_parse_cases(raw_transform.get('cases', [])),
                default=raw_transform.get('default'),
                has_default='default' in raw_transform,
            )
        return CopyOp(from_=body['from'], to=body['to'], transform=transform)
    if tag == '$pipe':
        return PipeOp(names=tuple(body))
    raise ValidationError(f"Unknown map operation: {tag}")


def parse_operations(raw_ops: Optional[List[Dict[str, Any]]]) -> Optional[Tuple[Operation, ...]]:
    if raw_ops is None:
        return None
    return tuple(op if not isinstance(op, dict) else parse_operation(op) for op in raw_ops)


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Flow:
    """
    Declarative rule mapping a source pattern to a target pattern.

    Inversion metadata (inverted, source_platform, original) does not take
    part in equality, so invert(invert(flow)) compares equal to flow.
    """
    from_: Union[str, Tuple[str, ...]]
    to: Union[str, Dict[str, Any]]
    map: Optional[Tuple[Operation, ...]] = None
    pipe: Optional[Tuple[str, ...]] = None
    merge: Optional[MergeStrategy] = None
    when: Optional[Dict[str, Any]] = None
    embed: Optional[str] = None
    section: Optional[str] = None
    inverted: bool = field(default=False, compare=False)
    source_platform: Optional[str] = field(default=None, compare=False)
    original: Optional['Flow'] = field(default=None, compare=False, repr=False)

    @property
    def from_patterns(self) -> Tuple[str, ...]:
        if isinstance(self.from_, str):
            return (self.from_,)
        return tuple(self.from_)

    @property
    def merge_strategy(self) -> MergeStrategy:
        return self.merge or MergeStrategy.REPLACE

    @property
    def label(self) -> str:
        """Human-readable source description for messages."""
        return ', '.join(self.from_patterns)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Flow':
        """
        Build a Flow from its configuration dict.

        Raises:
            ValidationError: If required keys are missing or operations are invalid
        """
        if not isinstance(data, dict):
            raise ValidationError("Flow must be an object")
        missing = [key for key in ('from', 'to') if key not in data]
        if missing:
            raise ValidationError(f"Flow is missing required field(s): {', '.join(missing)}")

        raw_from = data['from']
        from_ = raw_from if isinstance(raw_from, str) else tuple(raw_from)

        merge = data.get('merge')
        if merge is not None:
            try:
                merge = MergeStrategy(merge)
            except ValueError:
                raise ValidationError(f"Unknown merge strategy: {merge}")

        pipe = data.get('pipe')
        return cls(
            from_=from_,
            to=data['to'],
            map=parse_operations(data.get('map')),
            pipe=tuple(pipe) if pipe is not None else None,
            merge=merge,
            when=data.get('when'),
            embed=data.get('embed'),
            section=data.get('section'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'from': self.from_ if isinstance(self.from_, str) else list(self.from_),
            'to': self.to,
        }
        if self.map is not None:
            data['map'] = [op.to_dict() for op in self.map]
        if self.pipe is not None:
            data['pipe'] = list(self.pipe)
        if self.merge is not None:
            data['merge'] = self.merge.value
        if self.when is not None:
            data['when'] = self.when
        if self.embed is not None:
            data['embed'] = self.embed
        if self.section is not None:
            data['section'] = self.section
        return data


@dataclass
class FlowContext:
    """Everything a flow needs to know about where and why it runs."""
    workspace_root: Path
    package_root: Path
    platform: str
    package_name: str
    direction: FlowDirection = FlowDirection.INSTALL
    variables: Dict[str, Any] = field(default_factory=dict)
    dry_run: bool = False

    def __post_init__(self):
        self.workspace_root = Path(self.workspace_root)
        self.package_root = Path(self.package_root)
        self.direction = FlowDirection(self.direction)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class FlowResult:
    """Outcome of running one flow against one source file."""
    source: str
    target: Optional[str]
    success: bool
    transformed: bool = False
    skipped: bool = False
    written: bool = False
    keys: Optional[List[str]] = None
    merge: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


# A file_mapping entry is a workspace path, or for deep/shallow merges a
# {"target": path, "merge": strategy, "keys": [...]} dict naming the key
# paths the package contributed to a shared file.
MappingEntry = Union[str, Dict[str, Any]]


def mapping_target(entry: MappingEntry) -> str:
    return entry['target'] if isinstance(entry, dict) else entry


@dataclass
class FlowInstallResult:
    """Aggregated outcome of installing one package's flows."""
    files_processed: int = 0
    files_written: int = 0
    errors: List[str] = field(default_factory=list)
    conflicts: List[Any] = field(default_factory=list)
    target_paths: List[str] = field(default_factory=list)
    file_mapping: Dict[str, List[MappingEntry]] = field(default_factory=dict)

    @property
    def had_errors(self) -> bool:
        return bool(self.errors)

    @property
    def installed_any_files(self) -> bool:
        return self.files_written > 0
