"""
Built-in transforms referenced by flows and $pipe operations.

Available transforms:
- json, jsonc, yaml, toml: parse text into documents
- to-json, to-yaml, to-toml: serialize documents to text
- filter-empty, filter-null, filter-comments: one-way filters
- mcp-to-codex-schema, mcp-to-codex-toml, codex-toml-to-mcp: Codex MCP bridge

Adding a new transform:
1. Subclass core.transforms.Transform in a module here
2. Add an instance to register_default_transforms()
"""

from core.transforms import TransformRegistry

from .codex import CodexTomlToMcpTransform, McpToCodexSchemaTransform, McpToCodexTomlTransform, codex_transforms
from .filters import FilterCommentsTransform, FilterEmptyTransform, FilterNullTransform, filter_transforms
from .formats import ParseTransform, SerializeTransform, format_transforms


def register_default_transforms(registry: TransformRegistry) -> TransformRegistry:
    """
    Register every built-in transform.

    Raises:
        ValueError: If the registry already holds one of the names
    """
    for transform in format_transforms() + filter_transforms() + codex_transforms():
        registry.register(transform)
    return registry


def create_default_registry() -> TransformRegistry:
    return register_default_transforms(TransformRegistry())


__all__ = [
    'CodexTomlToMcpTransform',
    'FilterCommentsTransform',
    'FilterEmptyTransform',
    'FilterNullTransform',
    'McpToCodexSchemaTransform',
    'McpToCodexTomlTransform',
    'ParseTransform',
    'SerializeTransform',
    'create_default_registry',
    'register_default_transforms',
]
