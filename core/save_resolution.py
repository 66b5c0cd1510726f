"""
Save-time resolution of workspace edits back into a package.

A package file (registry path) may have been installed to several workspace
locations, one per platform. On save, every workspace copy becomes a
candidate and candidates are grouped per registry path alongside the
package's current ("local") copy. Per group:

- no workspace candidates -> nothing to do
- all workspace copies identical to the local copy -> already at parity
- one distinct workspace content -> write it
- several distinct contents -> force-newest (newest mtime, ties by display
  path) or interactive (ask per candidate, newest first)

Interactive resolution takes a prompt callable so any front end can drive it:

    def prompt(candidate, registry_path, choices):
        return CandidateAction.UNIVERSAL

Candidates already at parity with the local copy, with the universal choice
just made, or with an existing platform-specific file ("x.claude.md") are
skipped without prompting.
"""

import hashlib
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Tuple

from .candidate_groups import CandidateGroups, by_recency, rank
from .document_io import is_markdown, split_frontmatter
from .flow_executor import extract_composite_section
from .flow_models import MappingEntry, mapping_target
from .path_utils import iter_files, normalize_path
from .platforms import PlatformRegistry

logger = logging.getLogger(__name__)

LOCAL = 'local'
WORKSPACE = 'workspace'


class ResolutionStrategy(str, Enum):
    SKIP = 'skip'
    WRITE_SINGLE = 'write-single'
    WRITE_NEWEST = 'write-newest'
    FORCE_NEWEST = 'force-newest'
    INTERACTIVE = 'interactive'


class AnalysisType(str, Enum):
    NO_ACTION_NEEDED = 'no-action-needed'
    NO_CHANGE_NEEDED = 'no-change-needed'
    AUTO_WRITE = 'auto-write'
    NEEDS_RESOLUTION = 'needs-resolution'


class CandidateAction(str, Enum):
    UNIVERSAL = 'universal'
    PLATFORM_SPECIFIC = 'platform-specific'
    SKIP = 'skip'


@dataclass
class SaveCandidate:
    """One version of a package file, read fresh from disk."""
    source: str
    registry_path: str
    full_path: str
    content: str
    content_hash: str
    mtime: float
    display_path: str
    platform: Optional[str] = None
    section_body: Optional[str] = None
    is_root_file: bool = False
    frontmatter: Optional[Dict[str, Any]] = None
    markdown_body: Optional[str] = None
    is_markdown: bool = False


@dataclass
class SaveCandidateGroup:
    registry_path: str
    local: Optional[SaveCandidate] = None
    workspace: List[SaveCandidate] = field(default_factory=list)


@dataclass
class ConflictAnalysis:
    registry_path: str
    type: AnalysisType
    workspace_candidate_count: int
    unique_workspace_candidates: List[SaveCandidate]
    has_local_candidate: bool
    local_matches_workspace: bool
    is_root_file: bool
    has_platform_candidates: bool
    recommended_strategy: ResolutionStrategy


@dataclass
class ResolutionResult:
    selection: Optional[SaveCandidate]
    platform_specific: List[SaveCandidate]
    strategy: ResolutionStrategy
    was_interactive: bool = False


@dataclass
class WriteOperation:
    registry_path: str
    target_path: str
    content: str
    operation: str
    is_platform_specific: bool = False
    platform: Optional[str] = None


@dataclass
class WriteResult:
    operation: WriteOperation
    success: bool
    error: Optional[str] = None


@dataclass
class CandidateBuildError:
    path: str
    registry_path: str
    reason: str


PromptCallable = Callable[[SaveCandidate, str, List[CandidateAction]], CandidateAction]


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------

def calculate_hash(content: str) -> str:
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


def infer_platform(display_path: str, platforms: Optional[PlatformRegistry]) -> Optional[str]:
    """Platform owning a workspace path: by root directory, then by unique root file."""
    if platforms is None:
        return None
    platform = platforms.detect_platform(display_path)
    if platform:
        return platform
    owners = [
        platform_id for platform_id in platforms.list_platforms()
        if platforms.get_platform(platform_id).root_file == display_path
    ]
    return owners[0] if len(owners) == 1 else None


def build_candidate(source: str, full_path: Path, registry_path: str, root: Path,
                    platforms: Optional[PlatformRegistry] = None,
                    package_name: Optional[str] = None) -> Optional[SaveCandidate]:
    """
    Read one file into a candidate.

    For workspace files holding composite sections, only package_name's
    section is the candidate content.

    Returns:
        The candidate, or None if the file could not be read
    """
    full_path = Path(full_path)
    try:
        with open(full_path, 'r', encoding='utf-8') as f:
            content = f.read()
        mtime = os.path.getmtime(full_path)
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to build candidate for %s: %s", full_path, e)
        return None

    try:
        display_path = full_path.relative_to(root).as_posix()
    except ValueError:
        display_path = registry_path

    candidate = SaveCandidate(
        source=source,
        registry_path=registry_path,
        full_path=str(full_path),
        content=content,
        content_hash='',
        mtime=mtime,
        display_path=display_path,
        platform=infer_platform(display_path, platforms) if source == WORKSPACE else None,
    )

    if source == WORKSPACE and package_name:
        section = extract_composite_section(content, package_name)
        if section is not None:
            candidate.is_root_file = True
            candidate.section_body = section
            candidate.content = section.strip() + '\n'

    if is_markdown(str(full_path)):
        candidate.is_markdown = True
        try:
            document = split_frontmatter(candidate.content)
        except ValueError as e:
            logger.debug("Failed to parse frontmatter for %s: %s", full_path, e)
        else:
            if document.frontmatter:
                candidate.frontmatter = document.frontmatter
                candidate.markdown_body = document.body

    candidate.content_hash = calculate_hash(candidate.content)
    return candidate


def build_candidates(package_root: Path, workspace_root: Path, files_mapping: Dict[str, List[MappingEntry]],
                     platforms: Optional[PlatformRegistry] = None,
                     package_name: Optional[str] = None):
    """
    Build local and workspace candidates from an install file mapping.

    Args:
        package_root: Package directory
        workspace_root: Workspace directory
        files_mapping: Registry path -> workspace paths it was installed to;
            keys ending in "/" map whole directories; keyed merge
            entries (FlowInstallResult.file_mapping) are accepted too

    Returns:
        (local candidates, workspace candidates, errors)
    """
    package_root = Path(package_root)
    workspace_root = Path(workspace_root)
    local: List[SaveCandidate] = []
    workspace: List[SaveCandidate] = []
    errors: List[CandidateBuildError] = []

    for raw_key, targets in files_mapping.items():
        registry_key = normalize_path(raw_key)
        if not registry_key:
            continue
        is_directory = raw_key.endswith('/')

        if not is_directory and (package_root / registry_key).is_file():
            candidate = build_candidate(LOCAL, package_root / registry_key, registry_key, package_root)
            if candidate:
                local.append(candidate)

        for entry in targets:
            target_path = workspace_root / normalize_path(mapping_target(entry))
            if is_directory:
                if not target_path.is_dir():
                    continue
                try:
                    relatives = list(iter_files(target_path))
                except OSError as e:
                    errors.append(CandidateBuildError(str(target_path), registry_key,
                                                      f"Failed to enumerate directory: {e}"))
                    continue
                for relative in relatives:
                    registry_path = str(PurePosixPath(registry_key) / relative)
                    candidate = build_candidate(WORKSPACE, target_path / relative, registry_path,
                                                workspace_root, platforms, package_name)
                    if candidate:
                        workspace.append(candidate)
            elif target_path.is_file():
                candidate = build_candidate(WORKSPACE, target_path, registry_key,
                                            workspace_root, platforms, package_name)
                if candidate:
                    workspace.append(candidate)

    return local, workspace, errors


# ---------------------------------------------------------------------------
# Grouping and analysis
# ---------------------------------------------------------------------------

RECENCY = by_recency(lambda c: c.mtime, lambda c: c.display_path)


def build_candidate_groups(local_candidates: List[SaveCandidate],
                           workspace_candidates: List[SaveCandidate]) -> List[SaveCandidateGroup]:
    """Group candidates by registry path, keeping first-seen order of paths."""
    workspace = CandidateGroups(RECENCY)
    for candidate in workspace_candidates:
        workspace.add(candidate.registry_path, candidate)

    groups: Dict[str, SaveCandidateGroup] = {}
    for candidate in local_candidates:
        groups.setdefault(candidate.registry_path, SaveCandidateGroup(candidate.registry_path)).local = candidate
    for registry_path in workspace.keys():
        group = groups.setdefault(registry_path, SaveCandidateGroup(registry_path))
        group.workspace = workspace.candidates(registry_path)
    return list(groups.values())


def filter_groups_with_workspace(groups: List[SaveCandidateGroup]) -> List[SaveCandidateGroup]:
    return [group for group in groups if group.workspace]


def deduplicate_candidates(candidates: List[SaveCandidate]) -> List[SaveCandidate]:
    """First candidate of each distinct content hash, in order."""
    seen = set()
    unique = []
    for candidate in candidates:
        if candidate.content_hash not in seen:
            seen.add(candidate.content_hash)
            unique.append(candidate)
    return unique


def sort_candidates_by_mtime(candidates: List[SaveCandidate]) -> List[SaveCandidate]:
    """Newest first; ties ordered alphabetically by display path."""
    return rank(candidates, RECENCY)


def get_newest_candidate(candidates: List[SaveCandidate]) -> SaveCandidate:
    if not candidates:
        raise ValueError("Cannot get newest candidate from empty list")
    return sort_candidates_by_mtime(candidates)[0]


def analyze_group(group: SaveCandidateGroup, force: bool = False,
                  root_files: Tuple[str, ...] = ('AGENTS.md',)) -> ConflictAnalysis:
    """Classify a group and recommend a resolution strategy."""
    workspace = group.workspace
    is_root_file = group.registry_path in root_files or any(c.is_root_file for c in workspace)
    has_platform = any(c.platform for c in workspace)

    def analysis(kind, unique, matches, strategy, platform_candidates=has_platform):
        return ConflictAnalysis(
            registry_path=group.registry_path,
            type=kind,
            workspace_candidate_count=len(workspace),
            unique_workspace_candidates=unique,
            has_local_candidate=group.local is not None,
            local_matches_workspace=matches,
            is_root_file=is_root_file,
            has_platform_candidates=platform_candidates,
            recommended_strategy=strategy,
        )

    if not workspace:
        return analysis(AnalysisType.NO_ACTION_NEEDED, [], False, ResolutionStrategy.SKIP, False)

    unique = deduplicate_candidates(workspace)
    if group.local is not None and len(unique) == 1 and unique[0].content_hash == group.local.content_hash:
        return analysis(AnalysisType.NO_CHANGE_NEEDED, unique, True, ResolutionStrategy.SKIP)

    if len(unique) == 1:
        return analysis(AnalysisType.AUTO_WRITE, unique, False, ResolutionStrategy.WRITE_SINGLE)

    strategy = ResolutionStrategy.FORCE_NEWEST if force else ResolutionStrategy.INTERACTIVE
    return analysis(AnalysisType.NEEDS_RESOLUTION, unique, False, strategy)


# ---------------------------------------------------------------------------
# Platform-specific files
# ---------------------------------------------------------------------------

def create_platform_specific_registry_path(registry_path: str, platform: str) -> Optional[str]:
    """
    Registry path of a platform-specific variant: rules/x.md -> rules/x.claude.md.

    Returns:
        None if the path has no file extension to insert the platform before
    """
    path = PurePosixPath(normalize_path(registry_path))
    if not path.name or not path.suffix or not platform:
        return None
    return str(path.with_name(f"{path.stem}.{platform}{path.suffix}"))


def _platform_file_hash(package_root: Path, registry_path: str, platform: Optional[str]) -> Optional[str]:
    if not platform:
        return None
    platform_path = create_platform_specific_registry_path(registry_path, platform)
    if not platform_path:
        return None
    full_path = Path(package_root) / platform_path
    if not full_path.is_file():
        return None
    try:
        with open(full_path, 'r', encoding='utf-8') as f:
            return calculate_hash(f.read())
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("Could not read platform file %s: %s", full_path, e)
        return None


def is_at_parity(candidate: SaveCandidate, group: SaveCandidateGroup,
                 package_root: Path) -> Tuple[bool, Optional[str]]:
    """Whether candidate already matches the local copy or its platform-specific file."""
    if group.local is not None and candidate.content_hash == group.local.content_hash:
        return True, "Already matches universal"
    if candidate.content_hash == _platform_file_hash(package_root, group.registry_path, candidate.platform):
        return True, "Already matches platform-specific file"
    return False, None


def prune_existing_platform_candidates(package_root: Path, groups: List[SaveCandidateGroup]):
    """
    Drop workspace candidates whose platform-specific package file already exists.

    Those edits belong to the platform variant, not the universal file. Only
    groups with a local copy are pruned.
    """
    for group in groups:
        if group.local is None:
            continue
        kept = []
        for candidate in group.workspace:
            platform_path = create_platform_specific_registry_path(group.registry_path, candidate.platform) \
                if candidate.platform else None
            if platform_path and (Path(package_root) / platform_path).exists():
                logger.debug("Skipping workspace candidate %s for %s: %s already exists",
                             candidate.display_path, group.registry_path, platform_path)
                continue
            kept.append(candidate)
        group.workspace = kept


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _resolve_force(candidates: List[SaveCandidate]) -> ResolutionResult:
    newest = candidates[0]
    tied = [c for c in candidates if c.mtime == newest.mtime]
    if len(tied) > 1:
        logger.warning("Force mode: %d files share the newest modification time; selecting %s",
                       len(tied), newest.display_path)
    else:
        logger.info("Force mode: selecting newest %s", newest.display_path)
    for candidate in candidates[1:]:
        reason = 'tied, not alphabetically first' if candidate in tied else 'older'
        logger.info("  Skipping %s (%s)", candidate.display_path, reason)
    return ResolutionResult(newest, [], ResolutionStrategy.FORCE_NEWEST)


def _resolve_interactive(group: SaveCandidateGroup, candidates: List[SaveCandidate],
                         package_root: Path, prompt: PromptCallable) -> ResolutionResult:
    universal: Optional[SaveCandidate] = None
    platform_specific: List[SaveCandidate] = []

    for candidate in candidates:
        at_parity, reason = is_at_parity(candidate, group, package_root)
        if at_parity:
            logger.info("%s: %s, skipping", candidate.display_path, reason)
            continue
        if universal is not None and candidate.content_hash == universal.content_hash:
            logger.info("%s: identical to universal, skipping", candidate.display_path)
            continue

        choices = [CandidateAction.PLATFORM_SPECIFIC, CandidateAction.SKIP]
        if universal is None:
            choices.insert(0, CandidateAction.UNIVERSAL)
        action = CandidateAction(prompt(candidate, group.registry_path, choices))
        if action not in choices:
            raise ValueError(f"Action '{action.value}' is not available for {candidate.display_path}")

        if action == CandidateAction.UNIVERSAL:
            universal = candidate
        elif action == CandidateAction.PLATFORM_SPECIFIC:
            platform_specific.append(candidate)

    return ResolutionResult(universal, platform_specific, ResolutionStrategy.INTERACTIVE, was_interactive=True)


def execute_resolution(group: SaveCandidateGroup, analysis: ConflictAnalysis, package_root: Path,
                       prompt: Optional[PromptCallable] = None) -> Optional[ResolutionResult]:
    """
    Apply the analysis' recommended strategy.

    Returns:
        The resolution, or None when nothing should be written

    Raises:
        ValueError: If interactive resolution is needed and no prompt was given
    """
    strategy = analysis.recommended_strategy
    if strategy == ResolutionStrategy.SKIP:
        return None

    candidates = sort_candidates_by_mtime(analysis.unique_workspace_candidates)
    if strategy == ResolutionStrategy.WRITE_SINGLE:
        return ResolutionResult(candidates[0], [], strategy)
    if strategy == ResolutionStrategy.WRITE_NEWEST:
        return ResolutionResult(get_newest_candidate(candidates), [], strategy)
    if strategy == ResolutionStrategy.FORCE_NEWEST:
        return _resolve_force(candidates)
    if strategy == ResolutionStrategy.INTERACTIVE:
        if prompt is None:
            raise ValueError(f"Resolving {group.registry_path} interactively requires a prompt")
        return _resolve_interactive(group, candidates, Path(package_root), prompt)
    raise ValueError(f"Unknown resolution strategy: {strategy}")


def resolve_group(group: SaveCandidateGroup, package_root: Path, force: bool = False,
                  prompt: Optional[PromptCallable] = None) -> Optional[ResolutionResult]:
    return execute_resolution(group, analyze_group(group, force), package_root, prompt)


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def _content_to_write(candidate: SaveCandidate) -> str:
    if candidate.is_root_file and candidate.section_body:
        return candidate.section_body.strip()
    return candidate.content


def _safe_write(path: Path, content: str) -> Optional[str]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
    except OSError as e:
        logger.error("Failed to write %s: %s", path, e)
        return str(e)
    return None


def _write_universal(package_root: Path, registry_path: str, candidate: SaveCandidate,
                     local: Optional[SaveCandidate]) -> WriteResult:
    target = package_root / registry_path
    if local is None:
        kind = 'create'
    elif candidate.content_hash == local.content_hash:
        kind = 'skip'
    else:
        kind = 'update'
    content = _content_to_write(candidate)
    operation = WriteOperation(registry_path, str(target), content, kind)
    if kind == 'skip':
        logger.debug("Skipping write for %s: content identical to source", registry_path)
        return WriteResult(operation, True)
    error = _safe_write(target, content)
    if error is None:
        logger.debug("%s %s", 'Created' if kind == 'create' else 'Updated', registry_path)
    return WriteResult(operation, error is None, error)


def _write_platform_specific(package_root: Path, registry_path: str, candidate: SaveCandidate) -> WriteResult:
    platform = candidate.platform
    platform_path = create_platform_specific_registry_path(registry_path, platform) if platform else None
    if platform_path is None:
        reason = "Candidate has no platform association" if not platform \
            else f"Could not create platform-specific path for {platform}"
        return WriteResult(WriteOperation(registry_path, '', '', 'skip', True, platform), False, reason)

    target = package_root / platform_path
    content = _content_to_write(candidate)
    operation = WriteOperation(platform_path, str(target), content,
                               'update' if target.exists() else 'create', True, platform)
    if target.exists():
        try:
            with open(target, 'r', encoding='utf-8') as f:
                if f.read() == content:
                    operation.operation = 'skip'
                    return WriteResult(operation, True)
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Could not read existing file %s: %s", target, e)

    error = _safe_write(target, content)
    return WriteResult(operation, error is None, error)


def write_resolution(package_root: Path, registry_path: str, resolution: ResolutionResult,
                     local_candidate: Optional[SaveCandidate] = None) -> List[WriteResult]:
    """
    Write a resolution into the package.

    The universal selection goes to registry_path; each platform-specific
    candidate goes to its "name.<platform>.ext" sibling.
    """
    package_root = Path(package_root)
    results = []
    if resolution.selection is not None:
        results.append(_write_universal(package_root, registry_path, resolution.selection, local_candidate))
    else:
        logger.debug("No universal content selected for %s", registry_path)
    for candidate in resolution.platform_specific:
        results.append(_write_platform_specific(package_root, registry_path, candidate))
    return results
