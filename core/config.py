"""
Engine configuration.

An optional YAML file overrides the defaults:

    universal_subdirs: [commands, agents, rules, skills, hooks]
    detection_threshold: 0.7
    confidence_floor: 0.3
    temp_prefix: agent-flow-convert-
    platforms_file: ./my-platforms.yaml

Unknown keys are rejected so typos do not silently fall back to defaults.
"""

import logging
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ValidationError
from .format_detector import CONFIDENCE_FLOOR, DECISION_THRESHOLD, UNIVERSAL_SUBDIRS, FormatDetector
from .platform_converter import DEFAULT_TEMP_PREFIX
from .platforms import PlatformRegistry

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(levelname)s %(name)s: %(message)s'


@dataclass
class EngineConfig:
    universal_subdirs: List[str] = field(default_factory=lambda: list(UNIVERSAL_SUBDIRS))
    detection_threshold: float = DECISION_THRESHOLD
    confidence_floor: float = CONFIDENCE_FLOOR
    temp_prefix: str = DEFAULT_TEMP_PREFIX
    platforms_file: Optional[Path] = None

    def validate(self):
        """
        Raises:
            ValidationError: If any value is out of range
        """
        errors = []
        if not 0 <= self.detection_threshold <= 1:
            errors.append(f"detection_threshold must be between 0 and 1, got {self.detection_threshold}")
        if not 0 <= self.confidence_floor <= 1:
            errors.append(f"confidence_floor must be between 0 and 1, got {self.confidence_floor}")
        if not self.universal_subdirs or not all(isinstance(d, str) and d for d in self.universal_subdirs):
            errors.append("universal_subdirs must be a non-empty list of directory names")
        if not self.temp_prefix:
            errors.append("temp_prefix must be a non-empty string")
        if errors:
            raise ValidationError("Invalid engine configuration: " + "; ".join(errors), errors)

    def load_platforms(self) -> PlatformRegistry:
        if self.platforms_file:
            return PlatformRegistry.load(self.platforms_file)
        return PlatformRegistry.load_default()

    def create_detector(self, platforms: Optional[PlatformRegistry] = None) -> FormatDetector:
        platforms = platforms or self.load_platforms()
        return FormatDetector(
            platform_root_dirs=platforms.root_dirs(),
            universal_subdirs=self.universal_subdirs,
            threshold=self.detection_threshold,
            confidence_floor=self.confidence_floor,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> 'EngineConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError(f"Unknown configuration keys: {', '.join(unknown)}", unknown)
        values = dict(data)
        if values.get('platforms_file'):
            platforms_file = Path(values['platforms_file'])
            if base_dir and not platforms_file.is_absolute():
                platforms_file = base_dir / platforms_file
            values['platforms_file'] = platforms_file
        config = cls(**values)
        config.validate()
        return config


def load_config(path: Optional[Path] = None) -> EngineConfig:
    """
    Load configuration from a YAML file; defaults when path is None.

    Raises:
        ValidationError: If the file is not a mapping, has unknown keys or
            out-of-range values
        FileNotFoundError: If path does not exist
    """
    if path is None:
        return EngineConfig()
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid configuration file {path}: {e}")
    if not isinstance(data, dict):
        raise ValidationError(f"Configuration file {path} must contain a mapping")
    config = EngineConfig.from_dict(data, base_dir=path.parent)
    logger.debug("Loaded engine configuration from %s", path)
    return config


def configure_logging(verbose: bool = False):
    """Send engine logs to stderr; debug level when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
