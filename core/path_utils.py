"""
Path and pattern utilities shared by the map pipeline and the flow executor.

Two kinds of paths live here:
- Document paths: dot-separated key paths into nested dicts ("mcp.server.url"),
  optionally with "*" segments that expand against keys that actually exist.
- File patterns: slash-separated globs ("commands/**/*.md") with "{name}"
  placeholders that capture a segment (or part of one) for reuse in targets.

File globs match dotfiles and dot-directories; a package's platform
directories (".claude/", ".cursor/") are ordinary inputs here.
"""

import fnmatch
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

_MISSING = object()
_PLACEHOLDER = re.compile(r'\{(\w+)\}')
_BRACES = re.compile(r'\{([^{}]*,[^{}]*)\}')


# ---------------------------------------------------------------------------
# Document paths
# ---------------------------------------------------------------------------

def split_path(path: str) -> List[str]:
    """Split a dot path into its segments, ignoring empty ones."""
    return [part for part in path.split('.') if part]


def _step(current: Any, key: str) -> Any:
    if isinstance(current, dict):
        return current.get(key, _MISSING)
    if isinstance(current, list) and key.isdigit():
        index = int(key)
        return current[index] if index < len(current) else _MISSING
    return _MISSING


def get_nested_value(obj: Any, path: str, default: Any = None) -> Any:
    """
    Read the value at a dot path.

    Args:
        obj: Document to read from
        path: Dot-separated key path ("a.b.c"); numeric segments index lists
        default: Returned when any segment is missing

    Returns:
        The value found, or default
    """
    current = obj
    for key in split_path(path):
        current = _step(current, key)
        if current is _MISSING:
            return default
    return current


def has_nested_value(obj: Any, path: str) -> bool:
    """Check whether a dot path exists (a stored None counts as present)."""
    return get_nested_value(obj, path, _MISSING) is not _MISSING


def set_nested_value(obj: Dict[str, Any], path: str, value: Any) -> None:
    """Assign value at path, creating (or replacing non-dict) intermediates."""
    keys = split_path(path)
    if not keys:
        raise ValueError("Cannot set a value at an empty path")
    current = obj
    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


def delete_nested_value(obj: Dict[str, Any], path: str) -> bool:
    """
    Delete the value at path.

    Returns:
        True if something was deleted; a missing path is a no-op
    """
    keys = split_path(path)
    if not keys:
        return False
    current = obj
    for key in keys[:-1]:
        current = current.get(key) if isinstance(current, dict) else None
        if not isinstance(current, dict):
            return False
    if isinstance(current, dict) and keys[-1] in current:
        del current[keys[-1]]
        return True
    return False


def resolve_wildcard_paths(obj: Any, path: str) -> List[str]:
    """
    Expand "*" segments into the concrete paths present in obj.

    Only keys that exist in dicts are produced; lists and scalars never
    match a wildcard, so no path is ever fabricated.
    """
    return [concrete for concrete, _ in resolve_wildcard_matches(obj, path)]


def resolve_wildcard_matches(obj: Any, path: str) -> List[Tuple[str, List[str]]]:
    """Like resolve_wildcard_paths, also returning the keys each "*" bound to."""
    results: List[Tuple[str, List[str]]] = []

    def walk(current: Any, remaining: List[str], done: List[str], bound: List[str]):
        if not remaining:
            results.append(('.'.join(done), bound))
            return
        head, rest = remaining[0], remaining[1:]
        if head == '*':
            if isinstance(current, dict):
                for key in current:
                    walk(current[key], rest, done + [key], bound + [key])
            return
        child = _step(current, head)
        if child is _MISSING:
            return
        walk(child, rest, done + [head], bound)

    walk(obj, split_path(path), [], [])
    return results


def fill_wildcards(path: str, bound: List[str]) -> str:
    """Substitute bound keys into the "*" segments of path, in order."""
    values = iter(bound)
    parts = []
    for key in split_path(path):
        if key == '*':
            parts.append(next(values, '*'))
        else:
            parts.append(key)
    return '.'.join(parts)


def flatten_keys(obj: Any, prefix: str = '') -> List[str]:
    """
    List the leaf key paths of a nested dict.

    Lists and scalars are leaves. An empty dict is itself a leaf so that
    its key can later be tracked and removed.
    """
    if not isinstance(obj, dict):
        return [prefix] if prefix else []
    if not obj and prefix:
        return [prefix]
    keys: List[str] = []
    for key, value in obj.items():
        child = f"{prefix}.{key}" if prefix else str(key)
        keys.extend(flatten_keys(value, child))
    return keys


# ---------------------------------------------------------------------------
# Equality and value patterns
# ---------------------------------------------------------------------------

def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality that keeps booleans and numbers distinct."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(deep_equal(a[key], b[key]) for key in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(deep_equal(x, y) for x, y in zip(a, b))
    return a == b


def is_glob(pattern: str) -> bool:
    return any(ch in pattern for ch in '*?[')


def match_pattern(value: Any, pattern: Any) -> bool:
    """
    Test a document value against a $switch case pattern.

    - "*" matches anything
    - A string pattern is a glob and only matches string values
    - A dict pattern matches a dict holding every pattern key with an equal
      value ("*" as a value accepts anything; a "*" key requires every value
      of the dict to equal the pattern value)
    - Anything else compares by deep equality
    """
    if pattern == '*':
        return True

    if isinstance(pattern, str):
        if not isinstance(value, str):
            return False
        return glob_match(value, pattern)

    if isinstance(pattern, dict):
        if not isinstance(value, dict):
            return False
        for key, expected in pattern.items():
            if key == '*':
                if not all(deep_equal(v, expected) for v in value.values()):
                    return False
                continue
            if key not in value:
                return False
            if expected == '*':
                continue
            if not deep_equal(value[key], expected):
                return False
        return True

    return deep_equal(value, pattern)


# ---------------------------------------------------------------------------
# File globs
# ---------------------------------------------------------------------------

def expand_braces(pattern: str) -> List[str]:
    """Expand "{a,b}" alternations; "{name}" placeholders are left alone."""
    match = _BRACES.search(pattern)
    if not match:
        return [pattern]
    expanded: List[str] = []
    for option in match.group(1).split(','):
        expanded.extend(expand_braces(pattern[:match.start()] + option + pattern[match.end():]))
    return expanded


def _translate_chunk(chunk: str) -> str:
    out = []
    i = 0
    while i < len(chunk):
        ch = chunk[i]
        if ch == '*':
            out.append('[^/]*')
        elif ch == '?':
            out.append('[^/]')
        elif ch == '[':
            end = chunk.find(']', i + 1)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = chunk[i + 1:end]
                if body.startswith('!'):
                    body = '^' + body[1:]
                out.append(f'[{body}]')
                i = end
        else:
            out.append(re.escape(ch))
        i += 1
    return ''.join(out)


def _segment_regex(segment: str, seen: set) -> str:
    parts = []
    last = 0
    for match in _PLACEHOLDER.finditer(segment):
        parts.append(_translate_chunk(segment[last:match.start()]))
        name = match.group(1)
        if name in seen:
            parts.append(f'(?P={name})')
        else:
            parts.append(f'(?P<{name}>[^/]+?)')
            seen.add(name)
        last = match.end()
    parts.append(_translate_chunk(segment[last:]))
    return ''.join(parts)


def pattern_to_regex(pattern: str):
    """
    Compile a slash-separated glob into an anchored regex.

    "**" as a whole segment spans zero or more directories; "{name}"
    becomes a named capture group.
    """
    segments = [s for s in pattern.replace('\\', '/').split('/') if s not in ('', '.')]
    seen: set = set()
    regex = '/' if pattern.startswith('/') else ''
    for index, segment in enumerate(segments):
        last = index == len(segments) - 1
        if segment == '**':
            regex += '.*' if last else '(?:[^/]+/)*'
            continue
        regex += _segment_regex(segment, seen)
        if not last:
            regex += '/'
    return re.compile(f'^{regex}$', re.DOTALL)


def match_path_pattern(path: str, pattern: str) -> Optional[Dict[str, str]]:
    """
    Match a relative file path against a pattern.

    Returns:
        Placeholder captures ({} when the pattern has none), or None
    """
    normalized = normalize_path(path)
    for candidate in expand_braces(normalize_path(pattern)):
        if candidate.startswith('/') != normalized.startswith('/'):
            continue
        if not _PLACEHOLDER.search(candidate) and '**' not in candidate:
            if _fnmatch_segments(normalized, candidate):
                return {}
            continue
        match = pattern_to_regex(candidate).match(normalized)
        if match:
            return {k: v for k, v in match.groupdict().items() if v is not None}
    return None


def _fnmatch_segments(path: str, pattern: str) -> bool:
    path_parts = [p for p in path.split('/') if p not in ('', '.')]
    pattern_parts = [p for p in pattern.replace('\\', '/').split('/') if p not in ('', '.')]
    if len(path_parts) != len(pattern_parts):
        return False
    return all(fnmatch.fnmatchcase(part, pat) for part, pat in zip(path_parts, pattern_parts))


def glob_match(path: str, pattern: str) -> bool:
    """Check whether path matches a glob (dotfiles included)."""
    return match_path_pattern(path, pattern) is not None


def normalize_path(path: str) -> str:
    """Use forward slashes and drop leading "./"."""
    normalized = path.replace('\\', '/')
    while normalized.startswith('./'):
        normalized = normalized[2:]
    return normalized


def static_prefix(pattern: str) -> str:
    """Return the leading directories of pattern that contain no glob syntax."""
    parts = []
    for segment in normalize_path(pattern).split('/')[:-1]:
        if is_glob(segment) or _PLACEHOLDER.search(segment):
            break
        parts.append(segment)
    return '/'.join(parts)


def fill_placeholders(pattern: str, captures: Dict[str, str]) -> str:
    """Substitute "{name}" placeholders; unknown names are left intact."""
    return _PLACEHOLDER.sub(lambda m: captures.get(m.group(1), m.group(0)), pattern)


def iter_files(root, skip_dirs: Tuple[str, ...] = ('.git',)) -> Iterator[str]:
    """Yield every file under root as a sorted relative POSIX path."""
    root = Path(root)
    if not root.is_dir():
        return
    for entry in sorted(root.rglob('*')):
        if not entry.is_file():
            continue
        relative = entry.relative_to(root)
        if relative.parts and relative.parts[0] in skip_dirs:
            continue
        yield relative.as_posix()


def prune_empty_parents(obj: Dict[str, Any], path: str) -> None:
    """Delete ancestors of path that are now empty dicts, innermost first."""
    keys = split_path(path)
    for depth in range(len(keys) - 1, 0, -1):
        parent = '.'.join(keys[:depth])
        if get_nested_value(obj, parent) == {}:
            delete_nested_value(obj, parent)
        else:
            break
