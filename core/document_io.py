"""
Reading and writing flow documents by file extension.

Supported formats:
- .json / .jsonc: JSON (JSONC comments and trailing commas are stripped)
- .yaml / .yml: YAML via PyYAML
- .toml: TOML via the toml package
- .md / .mdc: Markdown with optional YAML frontmatter

Anything else is treated as opaque text. Markdown files parse into a
MarkdownDocument so map operations can reshape the frontmatter while the
body passes through untouched.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import toml
import yaml

STRUCTURED_EXTENSIONS = ('.json', '.jsonc', '.yaml', '.yml', '.toml')
MARKDOWN_EXTENSIONS = ('.md', '.mdc', '.markdown')

_FRONTMATTER = re.compile(r'^---\r?\n(.*?)\r?\n---\r?\n?(.*)$', re.DOTALL)
_TRAILING_COMMA = re.compile(r',(\s*[}\]])')
_BARE_KEY = re.compile(r'^[A-Za-z0-9_-]+$')


class InlineTableEncoder(toml.TomlPreserveInlineDictEncoder):
    """
    Writes inline tables back inline, quoting keys that are not bare.

    toml.loads returns inline tables as InlineTableDict instances, so a
    parsed, merged and re-serialized file keeps its { key = value } tables.
    """

    def dump_inline_table(self, section):
        if isinstance(section, dict):
            pairs = []
            for key, value in section.items():
                rendered_key = key if _BARE_KEY.match(key) else json.dumps(key)
                pairs.append(f"{rendered_key} = {self.dump_inline_table(value).strip()}")
            return "{ " + ", ".join(pairs) + " }\n"
        return str(self.dump_value(section))


@dataclass
class MarkdownDocument:
    """Markdown file split into frontmatter fields and body text."""
    frontmatter: Dict[str, Any] = field(default_factory=dict)
    body: str = ''
    has_frontmatter: bool = False


def extension_of(path: str) -> str:
    name = str(path).replace('\\', '/').rsplit('/', 1)[-1]
    if '.' not in name.lstrip('.'):
        return ''
    return '.' + name.rsplit('.', 1)[-1].lower()


def is_structured(path: str) -> bool:
    return extension_of(path) in STRUCTURED_EXTENSIONS


def is_markdown(path: str) -> bool:
    return extension_of(path) in MARKDOWN_EXTENSIONS


def same_format(source: str, target: str) -> bool:
    """Whether source and target share a document format (.md and .mdc do)."""
    if is_markdown(source) and is_markdown(target):
        return True
    return extension_of(source) == extension_of(target)


def strip_json_comments(text: str) -> str:
    """Remove // and /* */ comments outside of strings, then trailing commas."""
    out = []
    i = 0
    in_string = False
    while i < len(text):
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == '\\' and i + 1 < len(text):
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
            continue
        if text.startswith('//', i):
            end = text.find('\n', i)
            i = len(text) if end == -1 else end
            continue
        if text.startswith('/*', i):
            end = text.find('*/', i + 2)
            i = len(text) if end == -1 else end + 2
            continue
        out.append(ch)
        i += 1
    return _TRAILING_COMMA.sub(r'\1', ''.join(out))


def split_frontmatter(content: str) -> MarkdownDocument:
    """Split Markdown into frontmatter and body; no frontmatter is fine."""
    match = _FRONTMATTER.match(content)
    if not match:
        return MarkdownDocument(frontmatter={}, body=content, has_frontmatter=False)
    yaml_content, body = match.groups()
    try:
        frontmatter = yaml.safe_load(yaml_content) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML frontmatter: {e}")
    if not isinstance(frontmatter, dict):
        raise ValueError("Markdown frontmatter must be a YAML mapping")
    return MarkdownDocument(frontmatter=frontmatter, body=body, has_frontmatter=True)


def render_markdown(document: MarkdownDocument) -> str:
    if not document.frontmatter:
        return document.body
    yaml_str = yaml.dump(document.frontmatter, default_flow_style=False, sort_keys=False, allow_unicode=True)
    return f"---\n{yaml_str}---\n{document.body}"


def parse_document(content: str, path: str) -> Any:
    """
    Parse file content according to the extension of path.

    Raises:
        ValueError: If the content is not valid for its format
    """
    ext = extension_of(path)
    try:
        if ext == '.json':
            return json.loads(content) if content.strip() else {}
        if ext == '.jsonc':
            stripped = strip_json_comments(content)
            return json.loads(stripped) if stripped.strip() else {}
        if ext in ('.yaml', '.yml'):
            data = yaml.safe_load(content)
            return {} if data is None else data
        if ext == '.toml':
            return toml.loads(content)
    except (json.JSONDecodeError, yaml.YAMLError, toml.TomlDecodeError) as e:
        raise ValueError(f"Invalid {ext[1:].upper()} in {path}: {e}")
    if ext in MARKDOWN_EXTENSIONS:
        return split_frontmatter(content)
    return content


def serialize_document(data: Any, path: str) -> str:
    """Serialize data for the extension of path; text passes through."""
    if isinstance(data, str):
        return data
    if isinstance(data, MarkdownDocument):
        return render_markdown(data)

    ext = extension_of(path)
    if ext in ('.yaml', '.yml'):
        return yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
    if ext == '.toml':
        return toml.dumps(data, encoder=InlineTableEncoder())
    if ext in MARKDOWN_EXTENSIONS and isinstance(data, dict):
        return render_markdown(MarkdownDocument(frontmatter=data, has_frontmatter=True))
    return json.dumps(data, indent=2, ensure_ascii=False) + '\n'


def structured_view(document: Any) -> Optional[Dict[str, Any]]:
    """The dict a map pipeline operates on, or None for opaque text."""
    if isinstance(document, MarkdownDocument):
        return document.frontmatter
    if isinstance(document, dict):
        return document
    return None
