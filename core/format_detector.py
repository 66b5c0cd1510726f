"""
Package format detection.

Classifies a package as universal or platform-specific from its file paths:
- universal: file under a canonical top-level directory (commands/, agents/,
  rules/, skills/, hooks/)
- platform-specific: file under a platform's reserved root directory
  (.claude/, .cursor/, ...) or named with a platform suffix (mcp.claude.jsonc)
- other: root-level files and unknown directories (counted in the total only)

Decision rule: more than 70% universal files -> universal; more than 70%
platform files -> platform-specific for the dominant platform; otherwise
universal with a conservative confidence floor of 0.3.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .path_utils import iter_files

logger = logging.getLogger(__name__)

UNIVERSAL_SUBDIRS = ('commands', 'agents', 'rules', 'skills', 'hooks')

PLATFORM_ROOT_DIRS: Dict[str, str] = {
    '.claude': 'claude',
    '.cursor': 'cursor',
    '.opencode': 'opencode',
    '.codex': 'codex',
    '.factory': 'factory',
    '.kilocode': 'kilo',
    '.kiro': 'kiro',
    '.qwen': 'qwen',
    '.roo': 'roo',
    '.warp': 'warp',
    '.windsurf': 'windsurf',
    '.augment': 'augment',
    '.agent': 'antigravity',
}

# Marker files meaning "universal layout, but content already native to a platform"
NATIVE_MARKERS: Dict[str, str] = {
    '.claude-plugin/plugin.json': 'claude',
}

DECISION_THRESHOLD = 0.7
CONFIDENCE_FLOOR = 0.3
SAMPLE_LIMIT = 5

UNIVERSAL = 'universal'
PLATFORM_SPECIFIC = 'platform-specific'


@dataclass(frozen=True)
class FormatAnalysis:
    universal_files: int = 0
    platform_specific_files: int = 0
    detected_platforms: Dict[str, int] = field(default_factory=dict)
    total_files: int = 0
    universal_samples: List[str] = field(default_factory=list)
    platform_samples: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PackageFormat:
    """Result of one detection pass; replaced, never mutated."""
    type: str
    confidence: float
    analysis: FormatAnalysis = field(default_factory=FormatAnalysis)
    platform: Optional[str] = None
    is_native_format: bool = False
    native_platform: Optional[str] = None

    @property
    def is_platform_specific(self) -> bool:
        return self.type == PLATFORM_SPECIFIC and self.platform is not None


class FormatDetector:
    """
    Classifies file lists.

    Args:
        platform_root_dirs: Map of reserved root directory -> platform id
        universal_subdirs: Canonical top-level directories
        threshold: Ratio above which a side wins
        confidence_floor: Minimum confidence for the ambiguous default
    """

    def __init__(self, platform_root_dirs: Optional[Dict[str, str]] = None,
                 universal_subdirs: Iterable[str] = UNIVERSAL_SUBDIRS,
                 threshold: float = DECISION_THRESHOLD,
                 confidence_floor: float = CONFIDENCE_FLOOR):
        self.platform_root_dirs = dict(platform_root_dirs or PLATFORM_ROOT_DIRS)
        self.platform_ids = set(self.platform_root_dirs.values())
        self.universal_subdirs = tuple(universal_subdirs)
        self.threshold = threshold
        self.confidence_floor = confidence_floor

    def classify_file(self, path: str):
        """
        Classify one path.

        Returns:
            (kind, platform) where kind is 'universal', 'platform-specific'
            or 'other'
        """
        parts = path.replace('\\', '/').split('/')
        first = parts[0]
        if first in self.platform_root_dirs:
            return PLATFORM_SPECIFIC, self.platform_root_dirs[first]
        if first in self.universal_subdirs:
            return UNIVERSAL, None
        suffix = self.platform_suffix(path)
        if suffix:
            return PLATFORM_SPECIFIC, suffix
        return 'other', None

    def platform_suffix(self, path: str) -> Optional[str]:
        """Platform named in a "name.platform.ext" filename, if any."""
        name_parts = path.replace('\\', '/').split('/')[-1].split('.')
        if len(name_parts) >= 3 and name_parts[-2] in self.platform_ids:
            return name_parts[-2]
        return None

    def analyze(self, files: Iterable[str]) -> FormatAnalysis:
        universal = 0
        platform_files = 0
        platforms: Dict[str, int] = {}
        universal_samples: List[str] = []
        platform_samples: List[str] = []
        total = 0

        for path in files:
            total += 1
            kind, platform = self.classify_file(path)
            if kind == UNIVERSAL:
                universal += 1
                if len(universal_samples) < SAMPLE_LIMIT:
                    universal_samples.append(path)
            elif kind == PLATFORM_SPECIFIC:
                platform_files += 1
                platforms[platform] = platforms.get(platform, 0) + 1
                if len(platform_samples) < SAMPLE_LIMIT:
                    platform_samples.append(path)

        return FormatAnalysis(
            universal_files=universal,
            platform_specific_files=platform_files,
            detected_platforms=platforms,
            total_files=total,
            universal_samples=universal_samples,
            platform_samples=platform_samples,
        )

    def detect(self, files: Iterable[str]) -> PackageFormat:
        """Detect the format of a package from its relative file paths."""
        files = list(files)
        analysis = self.analyze(files)
        native = detect_native_platform(files)
        native_fields = {'is_native_format': native is not None, 'native_platform': native}

        if analysis.total_files == 0:
            return PackageFormat(type=UNIVERSAL, confidence=0.0, analysis=analysis, **native_fields)

        universal_ratio = analysis.universal_files / analysis.total_files
        platform_ratio = analysis.platform_specific_files / analysis.total_files

        if universal_ratio > self.threshold:
            detected = PackageFormat(type=UNIVERSAL, confidence=universal_ratio, analysis=analysis, **native_fields)
        elif platform_ratio > self.threshold:
            dominant = dominant_platform(analysis.detected_platforms)
            detected = PackageFormat(
                type=PLATFORM_SPECIFIC,
                platform=dominant,
                confidence=platform_ratio,
                analysis=analysis,
                **native_fields,
            )
        else:
            detected = PackageFormat(
                type=UNIVERSAL,
                confidence=max(universal_ratio, self.confidence_floor),
                analysis=analysis,
                **native_fields,
            )

        logger.debug("Detected package format %s (platform=%s, confidence=%.2f)",
                     detected.type, detected.platform, detected.confidence)
        return detected


def dominant_platform(counts: Dict[str, int]) -> Optional[str]:
    """Platform with the most files; ties go to the lexically smallest id."""
    if not counts:
        return None
    return min(counts, key=lambda platform: (-counts[platform], platform))


def detect_native_platform(files: Iterable[str]) -> Optional[str]:
    for path in files:
        platform = NATIVE_MARKERS.get(path.replace('\\', '/'))
        if platform:
            return platform
    return None


def detect_package_format(files: Iterable[str], detector: Optional[FormatDetector] = None) -> PackageFormat:
    return (detector or FormatDetector()).detect(files)


def needs_conversion(package_format: PackageFormat, target_platform: str) -> bool:
    """Universal packages never need conversion; platform ones do unless native to target."""
    if package_format.type == UNIVERSAL:
        return False
    if package_format.is_platform_specific:
        return package_format.platform != target_platform
    return False


def should_use_path_mapping_only(package_format: PackageFormat, target_platform: str) -> bool:
    """True when content is already native to the target: remap paths, skip content transforms."""
    return package_format.is_native_format and package_format.native_platform == target_platform


def load_package_file_list(package_root: Path) -> List[str]:
    """Relative POSIX paths of every file in a package (.git/ skipped)."""
    return list(iter_files(package_root))


def should_install_directly(package_format: PackageFormat, target_platform: str) -> bool:
    """True when the package is already laid out for the target platform."""
    return package_format.is_platform_specific and package_format.platform == target_platform
