"""
Platform definitions and registry.

A platform describes one AI coding tool's on-disk layout:
- id / name: registry key and display name
- root_dir: reserved directory in a workspace (".claude", ".cursor", ...)
- root_file: optional root instructions file ("CLAUDE.md")
- export flows: universal package -> platform layout (install)
- import flows: platform layout -> universal package (conversion, save);
  derived by inverting the export flows when not configured

Definitions load from YAML:

    global:
      export: [...]
      import: [...]
    platforms:
      claude:
        name: Claude Code
        rootDir: .claude
        rootFile: CLAUDE.md
        export: [...]

The bundled definitions live in platforms.yaml next to this module.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ValidationError
from .flow_inverter import invert_flows
from .flow_models import Flow

logger = logging.getLogger(__name__)

DEFAULT_PLATFORMS_FILE = Path(__file__).with_name('platforms.yaml')


@dataclass
class PlatformDefinition:
    """One platform's layout and flows."""
    id: str
    name: str
    root_dir: str
    root_file: Optional[str] = None
    export_flows: List[Flow] = field(default_factory=list)
    configured_import_flows: Optional[List[Flow]] = None

    @property
    def import_flows(self) -> List[Flow]:
        if self.configured_import_flows is not None:
            return list(self.configured_import_flows)
        return invert_flows(self.export_flows, source_platform=self.id)

    def owns_path(self, path: str) -> bool:
        """Check whether a relative path lives under this platform's root dir."""
        first = path.replace('\\', '/').split('/', 1)[0]
        return first == self.root_dir

    @classmethod
    def from_dict(cls, platform_id: str, data: Dict[str, Any]) -> 'PlatformDefinition':
        if not isinstance(data, dict):
            raise ValidationError(f"Platform '{platform_id}' must be an object")
        if not data.get('rootDir'):
            raise ValidationError(f"Platform '{platform_id}' is missing rootDir")
        imports = data.get('import')
        return cls(
            id=platform_id,
            name=data.get('name', platform_id),
            root_dir=data['rootDir'],
            root_file=data.get('rootFile'),
            export_flows=[Flow.from_dict(f) for f in data.get('export', [])],
            configured_import_flows=[Flow.from_dict(f) for f in imports] if imports is not None else None,
        )


class PlatformRegistry:
    """
    Registry of platform definitions plus flows shared by every platform.

    Example:
        registry = PlatformRegistry.load_default()
        claude = registry.get_platform('claude')
        registry.detect_platform('.claude/agents/x.md')  # -> 'claude'
    """

    def __init__(self):
        self._platforms: Dict[str, PlatformDefinition] = {}
        self.global_export_flows: List[Flow] = []
        self.global_import_flows: List[Flow] = []

    def register(self, platform: PlatformDefinition):
        """
        Register a platform.

        Raises:
            ValueError: If the platform id is already registered
        """
        if platform.id in self._platforms:
            raise ValueError(f"Platform '{platform.id}' already registered")
        self._platforms[platform.id] = platform

    def unregister(self, platform_id: str):
        self._platforms.pop(platform_id, None)

    def get_platform(self, platform_id: str) -> Optional[PlatformDefinition]:
        return self._platforms.get(platform_id)

    def list_platforms(self) -> List[str]:
        return list(self._platforms.keys())

    def root_dirs(self) -> Dict[str, str]:
        """Map of reserved root directory -> platform id."""
        return {p.root_dir: p.id for p in self._platforms.values()}

    def detect_platform(self, path: str) -> Optional[str]:
        """Platform whose root directory contains path, if any."""
        for platform in self._platforms.values():
            if platform.owns_path(path):
                return platform.id
        return None

    def export_flows_for(self, platform_id: str) -> List[Flow]:
        """Global export flows followed by the platform's own."""
        platform = self._platforms.get(platform_id)
        if platform is None:
            raise ValidationError(f"Unknown platform: {platform_id}")
        return list(self.global_export_flows) + list(platform.export_flows)

    def import_flows_for(self, platform_id: str) -> List[Flow]:
        """Global import flows followed by the platform's own."""
        platform = self._platforms.get(platform_id)
        if platform is None:
            raise ValidationError(f"Unknown platform: {platform_id}")
        return list(self.global_import_flows) + platform.import_flows

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlatformRegistry':
        registry = cls()
        global_section = data.get('global') or {}
        registry.global_export_flows = [Flow.from_dict(f) for f in global_section.get('export', [])]
        imports = global_section.get('import')
        if imports is None:
            registry.global_import_flows = invert_flows(registry.global_export_flows)
        else:
            registry.global_import_flows = [Flow.from_dict(f) for f in imports]
        for platform_id, platform_data in (data.get('platforms') or {}).items():
            registry.register(PlatformDefinition.from_dict(platform_id, platform_data))
        return registry

    @classmethod
    def load(cls, path: Path) -> 'PlatformRegistry':
        """
        Load platform definitions from a YAML file.

        Raises:
            ValidationError: If the file is not a valid definitions document
        """
        with open(path, 'r', encoding='utf-8') as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValidationError(f"Invalid platform definitions in {path}: {e}")
        if not isinstance(data, dict):
            raise ValidationError(f"Platform definitions in {path} must be a mapping")
        registry = cls.from_dict(data)
        logger.debug("Loaded %d platforms from %s", len(registry.list_platforms()), path)
        return registry

    @classmethod
    def load_default(cls) -> 'PlatformRegistry':
        return cls.load(DEFAULT_PLATFORMS_FILE)
