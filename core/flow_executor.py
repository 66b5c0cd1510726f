"""
Flow executor: applies flows to the files of a package.

For each flow:
1. Evaluate "when"; a false condition skips the flow before any file is read
2. Discover source files under the package root matching "from"
   (dotfiles included; the first "from" pattern with matches wins)
3. For every match: bind {name} captures, run the map pipeline, then the
   "pipe" transforms
4. Resolve the target from "to" and write it with the flow's merge strategy

Merge strategies:
- replace: overwrite the target
- deep / shallow: merge parsed object trees (recursively / top level only) and
  record the leaf key paths this flow contributed, so uninstall can remove
  exactly those keys later
- composite: keep one marked section per package in a shared text file

A failing file produces a failed FlowResult; sibling files still run.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Optional, Set

from .conditions import evaluate_condition
from .document_io import (
    MarkdownDocument,
    extension_of,
    is_structured,
    parse_document,
    same_format,
    serialize_document,
    structured_view,
)
from .errors import FlowEngineError, FlowIOError, ValidationError
from .flow_models import Flow, FlowContext, FlowResult, MergeStrategy
from .map_pipeline import apply_map_pipeline
from .path_utils import (
    delete_nested_value,
    fill_placeholders,
    flatten_keys,
    is_glob,
    iter_files,
    match_path_pattern,
    normalize_path,
    prune_empty_parents,
    static_prefix,
)
from .switch_resolver import is_switch_expression, resolve_switch_expression

logger = logging.getLogger(__name__)

COMPOSITE_START = '<!-- package: {name} -->'
COMPOSITE_END = '<!-- /package: {name} -->'


@dataclass
class SourceMatch:
    """A package file matched by a flow's source pattern."""
    path: str
    pattern: str
    captures: Dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Merging helpers
# ---------------------------------------------------------------------------

def deep_merge(base: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge incoming over base; lists and scalars are replaced."""
    result = copy.deepcopy(base)
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def shallow_merge(base: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    result.update(copy.deepcopy(incoming))
    return result


def _composite_pattern(package_name: str):
    start = re.escape(COMPOSITE_START.format(name=package_name))
    end = re.escape(COMPOSITE_END.format(name=package_name))
    return re.compile(rf'{start}\n.*?{end}\n?', re.DOTALL)


def merge_composite(existing: str, content: str, package_name: str) -> str:
    """Insert or replace one package's marked section in a shared document."""
    section = (
        f"{COMPOSITE_START.format(name=package_name)}\n"
        f"{content.strip()}\n"
        f"{COMPOSITE_END.format(name=package_name)}\n"
    )
    pattern = _composite_pattern(package_name)
    if pattern.search(existing):
        return pattern.sub(lambda _: section, existing, count=1)
    if not existing.strip():
        return section
    return existing.rstrip('\n') + '\n\n' + section


def extract_composite_section(existing: str, package_name: str) -> Optional[str]:
    """Body of a package's section, or None if it has none."""
    match = _composite_pattern(package_name).search(existing)
    if not match:
        return None
    lines = match.group(0).strip('\n').split('\n')
    return '\n'.join(lines[1:-1])


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class FlowExecutor:
    """
    Runs flows against a package.

    Args:
        registry: Transform registry used for "pipe" and $pipe (optional if
            no flow references a transform)
    """

    def __init__(self, registry=None):
        self.registry = registry

    # -- discovery ----------------------------------------------------------

    def source_patterns(self, flow: Flow, context: FlowContext) -> List[str]:
        """Concrete source patterns of flow (a $switch source is resolved)."""
        if is_switch_expression(flow.from_):
            return [resolve_switch_expression(flow.from_, context.variables)]
        return list(flow.from_patterns)

    def discover_sources(self, flow: Flow, context: FlowContext,
                         files: Optional[List[str]] = None) -> List[SourceMatch]:
        """
        Find package files matching the flow's source.

        Args:
            flow: Flow to match
            context: Flow context (package_root is walked)
            files: Pre-listed relative paths, to avoid re-walking the package

        Returns:
            Matches of the first pattern that matches anything, sorted by path
        """
        if files is None:
            files = list(iter_files(context.package_root))
        for pattern in self.source_patterns(flow, context):
            matches = []
            for path in files:
                captures = match_path_pattern(path, pattern)
                if captures is not None:
                    matches.append(SourceMatch(path=path, pattern=pattern, captures=captures))
            if matches:
                return matches
        return []

    def resolve_target(self, flow: Flow, match: SourceMatch, context: FlowContext) -> str:
        """
        Work out the target path for one matched source.

        Placeholders are filled from the source captures; glob segments in
        "to" reproduce the part of the source path the "from" glob matched.

        Returns:
            Target path, relative to the workspace root unless absolute
        """
        target = flow.to
        if is_switch_expression(target):
            target = resolve_switch_expression(target, context.variables)
        if not isinstance(target, str) or not target:
            raise ValidationError(f"Flow target must resolve to a path, got {target!r}")

        source = PurePosixPath(match.path)
        captures = dict(match.captures)
        captures.setdefault('name', source.stem)
        target = fill_placeholders(normalize_path(target), captures)

        if '**' in target:
            prefix = static_prefix(target)
            remainder = match.path
            source_prefix = static_prefix(match.pattern)
            if source_prefix and remainder.startswith(source_prefix + '/'):
                remainder = remainder[len(source_prefix) + 1:]
            target_dir = PurePosixPath(prefix) if prefix else PurePosixPath()
            if target.startswith('/') and not prefix.startswith('/'):
                target_dir = PurePosixPath('/') / target_dir
            result = target_dir / remainder
            target_ext = extension_of(target)
            if target_ext and '*' in PurePosixPath(target).name:
                result = result.with_suffix(target_ext)
            return str(result)

        target_path = PurePosixPath(target)
        if is_glob(target_path.name):
            name = target_path.name.replace('*', source.stem, 1) if '.' in target_path.name.lstrip('*') \
                else target_path.name.replace('*', source.name, 1)
            return str(target_path.with_name(name))
        return target

    def _absolute_target(self, target: str, context: FlowContext) -> Path:
        path = Path(target)
        return path if path.is_absolute() else context.workspace_root / path

    def _display_target(self, target_path: Path, context: FlowContext) -> str:
        try:
            return target_path.relative_to(context.workspace_root).as_posix()
        except ValueError:
            return str(target_path)

    # -- execution ----------------------------------------------------------

    def execute_flow(self, flow: Flow, context: FlowContext,
                     skip_targets: Optional[Set[str]] = None,
                     files: Optional[List[str]] = None) -> List[FlowResult]:
        """
        Run one flow over every matching source file.

        Args:
            flow: Flow to run
            context: Flow context
            skip_targets: Workspace-relative targets this package must not
                write (owned by a higher-priority package)
            files: Pre-listed package files

        Returns:
            One FlowResult per matched source file (empty if the condition
            is false or nothing matched)
        """
        try:
            if not evaluate_condition(flow.when, context):
                logger.debug("Skipping flow %s: condition not met", flow.label)
                return []
            matches = self.discover_sources(flow, context, files)
        except FlowEngineError as e:
            return [FlowResult(source=flow.label, target=None, success=False, error=str(e))]

        results = []
        for match in matches:
            results.append(self._execute_match(flow, match, context, skip_targets or set()))
        return results

    def execute_flows(self, flows: Iterable[Flow], context: FlowContext,
                      skip_targets: Optional[Set[str]] = None) -> List[FlowResult]:
        """Run flows sequentially in declaration order."""
        files = list(iter_files(context.package_root))
        results: List[FlowResult] = []
        for flow in flows:
            results.extend(self.execute_flow(flow, context, skip_targets, files))
        return results

    def _file_variables(self, match: SourceMatch, context: FlowContext) -> Dict[str, Any]:
        source = PurePosixPath(match.path)
        variables = dict(context.variables)
        variables.update({
            'sourcePath': match.path,
            'fileName': source.name,
            'fileStem': source.stem,
        })
        variables.update(match.captures)
        return variables

    def _execute_match(self, flow: Flow, match: SourceMatch, context: FlowContext,
                       skip_targets: Set[str]) -> FlowResult:
        result = FlowResult(source=match.path, target=None, success=False)
        try:
            target = self.resolve_target(flow, match, context)
            target_path = self._absolute_target(target, context)
            result.target = self._display_target(target_path, context)

            if result.target in skip_targets:
                logger.debug("Skipping %s -> %s: owned by another package", match.path, result.target)
                result.success = True
                result.skipped = True
                return result

            document, transformed, structured = self._transform(flow, match, context, target)
            result.transformed = transformed

            merge = flow.merge_strategy
            output = self._merge(merge, document, target_path, context)
            if merge in (MergeStrategy.DEEP, MergeStrategy.SHALLOW):
                result.keys = sorted(flatten_keys(structured)) if structured is not None else []
                result.merge = merge.value

            if context.dry_run:
                logger.info("[dry run] Would write %s", result.target)
            else:
                self._write(target_path, output)
                result.written = True
                logger.debug("Wrote %s -> %s", match.path, result.target)
            result.success = True
        except (FlowEngineError, ValueError) as e:
            result.error = str(e)
            logger.warning("Flow %s failed for %s: %s", flow.label, match.path, e)
        return result

    def _transform(self, flow: Flow, match: SourceMatch, context: FlowContext, target: str):
        """Read, map and pipe one source. Returns (document, transformed, keys source)."""
        source_path = context.package_root / match.path
        try:
            with open(source_path, 'r', encoding='utf-8') as f:
                content = f.read()
        except OSError as e:
            raise FlowIOError(f"Cannot read {match.path}: {e}", path=str(source_path))

        document: Any = parse_document(content, match.path)
        transformed = extension_of(match.path) != extension_of(target)
        variables = self._file_variables(match, context)

        reshaped = False
        view = structured_view(document)
        if flow.map and view is not None:
            mapped = apply_map_pipeline(view, flow.map, variables, self.registry)
            if isinstance(document, MarkdownDocument) and isinstance(mapped, dict):
                document = MarkdownDocument(
                    frontmatter=mapped,
                    body=document.body,
                    has_frontmatter=document.has_frontmatter or bool(mapped),
                )
            else:
                document = mapped
            transformed = True
            reshaped = True

        structured = document if isinstance(document, dict) else None
        for name in flow.pipe or ():
            if self.registry is None:
                raise ValidationError(f"Flow {flow.label} uses pipe '{name}' but no transform registry is set")
            document = self.registry.execute(name, document)
            transformed = True
            reshaped = True
            if isinstance(document, dict):
                structured = document

        if isinstance(document, str) and is_structured(target):
            structured = parse_document(document, target)

        if not reshaped and not (flow.embed or flow.section) and same_format(match.path, target):
            # untouched documents are copied verbatim
            document = content

        for key in (flow.embed, flow.section):
            if key:
                if not isinstance(document, dict):
                    document = parse_document(document, target) if isinstance(document, str) else document
                if not isinstance(document, dict):
                    raise ValidationError(f"Cannot place non-object content under '{key}'")
                document = {key: document}
                structured = document
                transformed = True

        return document, transformed, structured

    def _merge(self, merge: MergeStrategy, document: Any, target_path: Path, context: FlowContext) -> str:
        target = str(target_path)
        if merge == MergeStrategy.REPLACE:
            return serialize_document(document, target)

        if merge == MergeStrategy.COMPOSITE:
            content = serialize_document(document, target)
            existing = self._read_text(target_path) if target_path.exists() else ''
            return merge_composite(existing, content, context.package_name)

        incoming = parse_document(document, target) if isinstance(document, str) else document
        if not isinstance(incoming, dict):
            raise ValidationError(f"Merge '{merge.value}' needs object content for {target_path.name}")
        if not target_path.exists():
            if isinstance(document, str):
                return document
            return serialize_document(incoming, target)

        existing = self._read_document(target_path)
        if not isinstance(existing, dict):
            existing = {}
        merged = deep_merge(existing, incoming) if merge == MergeStrategy.DEEP else shallow_merge(existing, incoming)
        return serialize_document(merged, target)

    def _read_text(self, path: Path) -> str:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except OSError as e:
            raise FlowIOError(f"Cannot read {path}: {e}", path=str(path))

    def _read_document(self, path: Path) -> Any:
        return parse_document(self._read_text(path), str(path))

    def _write(self, path: Path, content: str):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                f.write(content)
        except OSError as e:
            raise FlowIOError(f"Cannot write {path}: {e}", path=str(path))

    # -- removal ------------------------------------------------------------

    def remove_contributed_keys(self, target_path: Path, keys: Iterable[str]) -> List[str]:
        """
        Remove exactly the given key paths from a merged structured file.

        Emptied parent objects are pruned; the file is deleted when nothing
        is left.

        Returns:
            Keys that were present and removed
        """
        target_path = Path(target_path)
        if not target_path.exists():
            return []
        data = self._read_document(target_path)
        if not isinstance(data, dict):
            return []
        removed = []
        for key in keys:
            if delete_nested_value(data, key):
                prune_empty_parents(data, key)
                removed.append(key)
        if data:
            self._write(target_path, serialize_document(data, str(target_path)))
        else:
            target_path.unlink()
        return removed

    def remove_composite_section(self, target_path: Path, package_name: str) -> bool:
        """Remove a package's section from a composite file."""
        target_path = Path(target_path)
        if not target_path.exists():
            return False
        existing = self._read_text(target_path)
        pattern = _composite_pattern(package_name)
        if not pattern.search(existing):
            return False
        remaining = pattern.sub('', existing, count=1)
        remaining = re.sub(r'\n{3,}', '\n\n', remaining).strip('\n')
        if remaining.strip():
            self._write(target_path, remaining + '\n')
        else:
            target_path.unlink()
        return True
