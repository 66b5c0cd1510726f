"""
Format transforms: parse text into documents and serialize documents to text.

Parsers (accept text, pass dicts and lists through unchanged):
- json, jsonc, yaml, toml

Serializers (accept dicts and lists, pass text through unchanged):
- to-json, to-yaml, to-toml

All are bidirectional, so they survive flow inversion.
"""

import json
from typing import Any, Dict, Optional

import toml
import yaml

from core.document_io import strip_json_comments
from core.transforms import Transform


class ParseTransform(Transform):
    """Parse text in one format; structured input passes through."""

    def __init__(self, format_name: str):
        self._format = format_name

    @property
    def name(self) -> str:
        return self._format

    @property
    def description(self) -> str:
        return f"Parse {self._format.upper()} text into a document"

    def execute(self, document: Any, options: Optional[Dict[str, Any]] = None) -> Any:
        if not isinstance(document, str):
            return document
        if not document.strip():
            return {}
        if self._format == 'json':
            return json.loads(document)
        if self._format == 'jsonc':
            return json.loads(strip_json_comments(document))
        if self._format == 'yaml':
            return yaml.safe_load(document)
        if self._format == 'toml':
            return toml.loads(document)
        raise ValueError(f"Unsupported format: {self._format}")


class SerializeTransform(Transform):
    """Serialize a document to text; text input passes through."""

    def __init__(self, format_name: str):
        self._format = format_name

    @property
    def name(self) -> str:
        return f"to-{self._format}"

    @property
    def description(self) -> str:
        return f"Serialize a document as {self._format.upper()}"

    def execute(self, document: Any, options: Optional[Dict[str, Any]] = None) -> Any:
        if isinstance(document, str):
            return document
        options = options or {}
        if self._format == 'json':
            return json.dumps(document, indent=options.get('indent', 2), ensure_ascii=False) + '\n'
        if self._format == 'yaml':
            return yaml.dump(document, default_flow_style=False, sort_keys=False, allow_unicode=True)
        if self._format == 'toml':
            if not isinstance(document, dict):
                raise ValueError("TOML documents must be tables")
            return toml.dumps(document)
        raise ValueError(f"Unsupported format: {self._format}")


def format_transforms():
    """All parse and serialize transforms."""
    return [
        ParseTransform('json'),
        ParseTransform('jsonc'),
        ParseTransform('yaml'),
        ParseTransform('toml'),
        SerializeTransform('json'),
        SerializeTransform('yaml'),
        SerializeTransform('toml'),
    ]
