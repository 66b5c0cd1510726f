"""
Named transform interface and registry.

Flows and $pipe operations refer to transforms by name ("yaml", "filter-empty",
"mcp-to-codex-toml"). The engine only sequences them; what a transform does
is up to its implementation in the adapters package.

Adding a new transform:
1. Subclass Transform and implement name and execute()
2. Register an instance with TransformRegistry
3. Reference it by name from a flow's "pipe" list or a $pipe operation
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .errors import TransformExecutionError

logger = logging.getLogger(__name__)


class Transform(ABC):
    """
    A document-to-document conversion step.

    Transforms receive whatever the previous step produced (a dict, a list or
    serialized text) and return the next form. One-way transforms (filters)
    report bidirectional=False and are dropped when a flow is inverted.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry key, e.g. 'yaml' or 'filter-empty'."""
        pass

    @property
    def description(self) -> str:
        return ""

    @property
    def bidirectional(self) -> bool:
        return True

    @abstractmethod
    def execute(self, document: Any, options: Optional[Dict[str, Any]] = None) -> Any:
        """
        Transform a document.

        Raises:
            Exception: Any failure; the registry wraps it in TransformExecutionError
        """
        pass


class TransformRegistry:
    """
    Lookup table of named transforms.

    Example:
        registry = TransformRegistry()
        registry.register(YamlTransform())
        data = registry.execute('yaml', text)
    """

    def __init__(self):
        self._transforms: Dict[str, Transform] = {}

    def register(self, transform: Transform):
        """
        Register a transform under its name.

        Raises:
            ValueError: If a transform with the same name is already registered
        """
        if transform.name in self._transforms:
            raise ValueError(f"Transform '{transform.name}' already registered")
        self._transforms[transform.name] = transform

    def unregister(self, name: str):
        """Remove a transform; unknown names are ignored."""
        self._transforms.pop(name, None)

    def has(self, name: str) -> bool:
        return name in self._transforms

    def get(self, name: str) -> Optional[Transform]:
        return self._transforms.get(name)

    def list_transforms(self) -> List[str]:
        return list(self._transforms.keys())

    def is_bidirectional(self, name: str) -> bool:
        """Unknown transforms count as one-way."""
        transform = self._transforms.get(name)
        return transform is not None and transform.bidirectional

    def execute(self, name: str, document: Any, options: Optional[Dict[str, Any]] = None) -> Any:
        """
        Run a named transform.

        Raises:
            TransformExecutionError: If the name is unknown or the transform fails
        """
        transform = self._transforms.get(name)
        if transform is None:
            raise TransformExecutionError(f"Unknown transform: {name}", transform_name=name)
        logger.debug("Running transform %s", name)
        try:
            return transform.execute(document, options)
        except TransformExecutionError:
            raise
        except Exception as e:
            raise TransformExecutionError(f"Transform '{name}' failed: {e}", transform_name=name) from e
