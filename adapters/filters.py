"""
One-way filter transforms.

Filters drop information and cannot be undone, so they report
bidirectional=False and flow inversion removes them:
- filter-empty: remove empty strings, lists and objects (recursively)
- filter-null: remove null values (recursively)
- filter-comments: strip // and /* */ comments from JSONC text, or "//"
  comment keys from objects
"""

from typing import Any, Dict, Optional

from core.document_io import strip_json_comments
from core.transforms import Transform

COMMENT_KEY_PREFIX = '//'


def _prune(value: Any, drop) -> Any:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            item = _prune(item, drop)
            if not drop(key, item):
                result[key] = item
        return result
    if isinstance(value, list):
        return [item for item in (_prune(item, drop) for item in value) if not drop(None, item)]
    return value


def _is_empty(_key, value) -> bool:
    return value == '' or value == [] or value == {}


def _is_null(_key, value) -> bool:
    return value is None


def _is_comment(key, _value) -> bool:
    return isinstance(key, str) and key.startswith(COMMENT_KEY_PREFIX)


class FilterTransform(Transform):
    """Base for one-way filters."""

    @property
    def bidirectional(self) -> bool:
        return False


class FilterEmptyTransform(FilterTransform):

    @property
    def name(self) -> str:
        return 'filter-empty'

    @property
    def description(self) -> str:
        return "Remove empty strings, lists and objects"

    def execute(self, document: Any, options: Optional[Dict[str, Any]] = None) -> Any:
        return _prune(document, _is_empty)


class FilterNullTransform(FilterTransform):

    @property
    def name(self) -> str:
        return 'filter-null'

    @property
    def description(self) -> str:
        return "Remove null values"

    def execute(self, document: Any, options: Optional[Dict[str, Any]] = None) -> Any:
        return _prune(document, _is_null)


class FilterCommentsTransform(FilterTransform):

    @property
    def name(self) -> str:
        return 'filter-comments'

    @property
    def description(self) -> str:
        return "Strip JSONC comments or comment keys"

    def execute(self, document: Any, options: Optional[Dict[str, Any]] = None) -> Any:
        if isinstance(document, str):
            return strip_json_comments(document)
        return _prune(document, _is_comment)


def filter_transforms():
    return [FilterEmptyTransform(), FilterNullTransform(), FilterCommentsTransform()]
