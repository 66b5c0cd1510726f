"""
Platform converter: brings platform-specific packages into the universal layout.

Conversion is a single platform-to-universal stage. The universal-to-target
half is the normal install pass (see core.flow_installer).

The stage:
- runs the global import flows, then the source platform's own,
  against the package's real paths (".claude/agents/x.md"); the platform
  prefix is never stripped, otherwise nothing would match and the package
  would be re-detected and re-converted forever
- materializes the files in a temporary "in" root and writes to a separate
  "out" root; both are removed on every exit path
- binds $$platform to the install target and $$source / $$sourcePlatform to
  the package's original platform
- passes through files no flow matched, unless they belong to a platform
  layout
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Dict, List, Optional

from .conversion_context import (
    ConversionContext,
    FormatState,
    create_context_from_format,
    update_context_after_conversion,
    with_target_platform,
)
from .errors import ConversionError
from .flow_executor import FlowExecutor
from .flow_models import Flow, FlowContext, FlowDirection
from .format_detector import UNIVERSAL, FormatDetector, PackageFormat, needs_conversion
from .path_utils import iter_files
from .platforms import PlatformRegistry
from .variables import build_variables

logger = logging.getLogger(__name__)

PLATFORM_TO_UNIVERSAL = 'platform-to-universal'
DEFAULT_TEMP_PREFIX = 'agent-flow-convert-'


@dataclass
class Package:
    """A package held in memory as relative path -> text content."""
    name: str
    files: Dict[str, str] = field(default_factory=dict)
    version: Optional[str] = None
    format: Optional[PackageFormat] = None

    @classmethod
    def from_directory(cls, root: Path, name: str, version: Optional[str] = None) -> 'Package':
        """Load every text file under root (.git/ skipped)."""
        root = Path(root)
        files = {}
        for relative in iter_files(root):
            with open(root / relative, 'r', encoding='utf-8') as f:
                files[relative] = f.read()
        return cls(name=name, files=files, version=version)

    def write_to(self, root: Path):
        root = Path(root)
        for relative, content in self.files.items():
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                f.write(content)


@dataclass
class ConversionStage:
    name: str
    description: str
    flows: List[Flow]
    source_platform: str


@dataclass
class StageResult:
    stage: str
    files_processed: int
    success: bool
    error: Optional[str] = None


@dataclass
class ConversionResult:
    success: bool
    package: Optional[Package] = None
    context: Optional[ConversionContext] = None
    stages: List[StageResult] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [stage.error for stage in self.stages if stage.error]


class PlatformConverter:
    """
    Converts packages to the universal layout ahead of installation.

    Args:
        platform_registry: Platform definitions (bundled ones by default)
        transform_registry: Registry for pipe transforms used by import flows
        temp_prefix: Prefix for the scoped temporary directories
        detector: Format detector; defaults to one over the registry's root dirs
    """

    def __init__(self, platform_registry: Optional[PlatformRegistry] = None,
                 transform_registry=None, temp_prefix: str = DEFAULT_TEMP_PREFIX,
                 detector: Optional[FormatDetector] = None):
        self.platforms = platform_registry or PlatformRegistry.load_default()
        self.executor = FlowExecutor(transform_registry)
        self.detector = detector or FormatDetector(self.platforms.root_dirs())
        self.temp_prefix = temp_prefix

    def detect(self, package: Package) -> PackageFormat:
        return package.format or self.detector.detect(package.files.keys())

    def build_stages(self, source_format: PackageFormat, target_platform: str) -> List[ConversionStage]:
        """Stages needed to prepare a package for target_platform (zero or one)."""
        if not needs_conversion(source_format, target_platform):
            return []
        source_platform = source_format.platform
        flows = self.platforms.import_flows_for(source_platform)
        logger.info("Building %s stage for %s with %d import flows",
                    PLATFORM_TO_UNIVERSAL, source_platform, len(flows))
        return [ConversionStage(
            name=PLATFORM_TO_UNIVERSAL,
            description=f"Convert from {source_platform} format to universal format",
            flows=flows,
            source_platform=source_platform,
        )]

    def convert(self, package: Package, target_platform: str,
                context: Optional[ConversionContext] = None,
                dry_run: bool = False) -> ConversionResult:
        """
        Convert a package for installation on target_platform.

        Args:
            package: Package to convert
            target_platform: Platform the package will be installed to
            context: Existing conversion context (created from detection if None)
            dry_run: Run flows without producing converted files

        Returns:
            ConversionResult; on failure the package is None and the context
            is the last valid one
        """
        source_format = self.detect(package)
        if context is None:
            context = create_context_from_format(source_format)
        context = with_target_platform(context, target_platform)

        stages = self.build_stages(source_format, target_platform)
        if not stages:
            logger.info("No conversion needed for %s (%s)", package.name, source_format.type)
            return ConversionResult(success=True, package=package, context=context)

        result = ConversionResult(success=True, context=context)
        current = package
        for stage in stages:
            logger.info("Executing conversion stage %s for %s", stage.name, package.name)
            try:
                converted, files_processed = self.run_stage(current, stage, context, target_platform, dry_run)
            except ConversionError as e:
                logger.error("Conversion of %s failed: %s", package.name, e)
                result.success = False
                result.stages.append(StageResult(stage.name, 0, False, str(e)))
                return result

            result.stages.append(StageResult(stage.name, files_processed, True))
            if dry_run:
                continue
            current = converted
            context = update_context_after_conversion(context, FormatState(UNIVERSAL), target_platform)
            result.context = context

        result.package = current
        return result

    def run_stage(self, package: Package, stage: ConversionStage, context: ConversionContext,
                  target_platform: str, dry_run: bool = False):
        """
        Run one stage in scoped temporary roots.

        Returns:
            (converted package, files processed)

        Raises:
            ConversionError: If any flow fails for any file
        """
        with TemporaryDirectory(prefix=self.temp_prefix) as temp_dir:
            stage_root = Path(temp_dir) / stage.name
            in_root = stage_root / 'in'
            out_root = stage_root / 'out'
            in_root.mkdir(parents=True)
            out_root.mkdir(parents=True)
            try:
                package.write_to(in_root)
            except OSError as e:
                raise ConversionError(f"Cannot materialize package: {e}", stage=stage.name) from e

            original_platform = context.original_format.platform or stage.source_platform
            flow_context = FlowContext(
                workspace_root=out_root,
                package_root=in_root,
                platform=target_platform,
                package_name=package.name,
                direction=FlowDirection.INSTALL,
                variables=build_variables(
                    platform=target_platform,
                    package_name=package.name,
                    source_platform=original_platform,
                    version=package.version,
                ),
                dry_run=dry_run,
            )

            results = self.executor.execute_flows(stage.flows, flow_context)
            for flow_result in results:
                if not flow_result.success:
                    raise ConversionError(
                        f"Flow execution failed for {flow_result.source}: {flow_result.error}",
                        stage=stage.name,
                    )
            files_processed = sum(1 for r in results if not r.skipped)
            logger.debug("Stage %s processed %d files", stage.name, files_processed)

            matched = {r.source for r in results}
            try:
                converted = Package.from_directory(out_root, package.name, package.version)
            except (OSError, UnicodeDecodeError) as e:
                raise ConversionError(f"Cannot read converted files: {e}", stage=stage.name) from e

        for relative, content in package.files.items():
            if relative in matched or relative in converted.files:
                continue
            kind, _ = self.detector.classify_file(relative)
            if kind == 'platform-specific':
                logger.debug("Dropping unconverted platform file %s", relative)
                continue
            converted.files[relative] = content

        converted = replace(converted, format=self.detector.detect(converted.files.keys()))
        return converted, files_processed
