"""
Multi-package install pass.

For one target platform:
1. Platform-specific packages for another platform are converted to the
   universal layout first (see core.platform_converter); packages already
   laid out for the target platform are copied as they are
2. Every package's replace-flow targets are tracked; targets claimed by
   several packages become ConflictReports and only the highest-priority
   package writes them
3. Packages install one after another, highest priority first, flows in
   declaration order

Packages are processed sequentially; there is no rollback across packages.
A package whose conversion fails reports the error and the pass moves on.
"""

import logging
from contextlib import ExitStack
from dataclasses import dataclass, replace
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Dict, Iterable, List, Optional

from .candidate_groups import by_priority, rank
from .conflicts import create_target_groups, generate_conflict_reports, skipped_targets, track_target_files
from .flow_executor import FlowExecutor
from .flow_models import (
    Flow,
    FlowContext,
    FlowDirection,
    FlowInstallResult,
    FlowResult,
    MappingEntry,
    mapping_target,
)
from .format_detector import FormatDetector, should_install_directly, should_use_path_mapping_only
from .platform_converter import DEFAULT_TEMP_PREFIX, Package, PlatformConverter
from .platforms import PlatformRegistry
from .variables import build_variables

logger = logging.getLogger(__name__)

# Packages already in the target layout are copied path for path
DIRECT_INSTALL_FLOWS = [Flow(from_='**', to='**')]


def path_mapping_flows(flows: List[Flow]) -> List[Flow]:
    """The flows with their content steps (map, pipe) removed."""
    return [replace(flow, map=None, pipe=None) for flow in flows]


@dataclass
class InstallPackage:
    """A package to install: its directory and its conflict priority."""
    name: str
    root: Path
    priority: int = 0
    version: Optional[str] = None


def _add_mapping(targets: List[MappingEntry], result: FlowResult):
    if result.keys is None:
        if result.target not in [mapping_target(entry) for entry in targets]:
            targets.append(result.target)
        return
    for entry in targets:
        if isinstance(entry, dict) and entry['target'] == result.target:
            entry['keys'] = sorted(set(entry['keys']) | set(result.keys))
            return
    targets.append({'target': result.target, 'merge': result.merge, 'keys': list(result.keys)})


def aggregate_flow_results(results: Iterable[FlowResult],
                           into: Optional[FlowInstallResult] = None) -> FlowInstallResult:
    """
    Fold per-file results into one FlowInstallResult.

    Targets written by deep/shallow merges are recorded as keyed entries so
    the contributed keys can be removed again on uninstall.
    """
    summary = into or FlowInstallResult()
    for result in results:
        if result.skipped:
            continue
        summary.files_processed += 1
        if not result.success:
            summary.errors.append(f"{result.source}: {result.error}")
            continue
        if result.target is None:
            continue
        _add_mapping(summary.file_mapping.setdefault(result.source, []), result)
        if result.written:
            summary.files_written += 1
            if result.target not in summary.target_paths:
                summary.target_paths.append(result.target)
    return summary


class FlowInstaller:
    """
    Installs packages into a workspace for one platform.

    Args:
        workspace_root: Workspace directory
        platform_registry: Platform definitions (bundled ones by default)
        transform_registry: Registry for pipe transforms
        detector: Format detector (EngineConfig.create_detector applies a
            loaded configuration); built from the platforms if None
    """

    def __init__(self, workspace_root: Path, platform_registry: Optional[PlatformRegistry] = None,
                 transform_registry=None, temp_prefix: str = DEFAULT_TEMP_PREFIX,
                 detector: Optional[FormatDetector] = None):
        self.workspace_root = Path(workspace_root)
        self.platforms = platform_registry or PlatformRegistry.load_default()
        self.transform_registry = transform_registry
        self.executor = FlowExecutor(transform_registry)
        self.converter = PlatformConverter(self.platforms, transform_registry, temp_prefix, detector)
        self.temp_prefix = temp_prefix

    def _context(self, package: InstallPackage, root: Path, platform: str,
                 source_platform: Optional[str], dry_run: bool) -> FlowContext:
        return FlowContext(
            workspace_root=self.workspace_root,
            package_root=root,
            platform=platform,
            package_name=package.name,
            direction=FlowDirection.INSTALL,
            variables=build_variables(platform, package.name, source_platform=source_platform,
                                      version=package.version),
            dry_run=dry_run,
        )

    def _prepare(self, package: InstallPackage, platform: str, flows: List[Flow],
                 stack: ExitStack, result: FlowInstallResult):
        """(root to install from, original platform, flows) for one package."""
        loaded = Package.from_directory(package.root, package.name, package.version)
        source_format = self.converter.detect(loaded)
        if should_install_directly(source_format, platform):
            return Path(package.root), source_format.platform, DIRECT_INSTALL_FLOWS
        if should_use_path_mapping_only(source_format, platform):
            logger.info("%s is native to %s; remapping paths only", package.name, platform)
            return Path(package.root), source_format.native_platform, path_mapping_flows(flows)
        if not self.converter.build_stages(source_format, platform):
            return Path(package.root), source_format.platform, flows

        conversion = self.converter.convert(loaded, platform)
        if not conversion.success:
            result.errors.extend(conversion.errors)
            return None, source_format.platform, flows

        converted_root = Path(stack.enter_context(TemporaryDirectory(prefix=self.temp_prefix)))
        conversion.package.write_to(converted_root)
        return converted_root, source_format.platform, flows

    def install(self, packages: List[InstallPackage], platform: str,
                dry_run: bool = False) -> Dict[str, FlowInstallResult]:
        """
        Install packages for platform.

        Returns:
            Package name -> FlowInstallResult, in install order. Conflict
            reports are attached to every package they involve.
        """
        flows = self.platforms.export_flows_for(platform)
        ordered = rank(list(packages), by_priority(lambda p: p.priority))
        results: Dict[str, FlowInstallResult] = {p.name: FlowInstallResult() for p in ordered}

        with ExitStack() as stack:
            prepared: Dict[str, tuple] = {}
            groups = create_target_groups()
            for package in ordered:
                result = results[package.name]
                try:
                    root, source_platform, package_flows = self._prepare(package, platform, flows, stack, result)
                except (OSError, UnicodeDecodeError) as e:
                    result.errors.append(f"Cannot load package {package.name}: {e}")
                    continue
                if root is None:
                    continue
                context = self._context(package, root, platform, source_platform, dry_run)
                prepared[package.name] = (context, package_flows)
                track_target_files(groups, package.name, package.priority, package_flows, context, self.executor)

            conflicts = generate_conflict_reports(groups)
            for report in conflicts:
                for involved in report.packages:
                    results[involved.package_name].conflicts.append(report)

            for package in ordered:
                if package.name not in prepared:
                    continue
                context, package_flows = prepared[package.name]
                logger.info("Installing %s for %s", package.name, platform)
                flow_results = self.executor.execute_flows(
                    package_flows, context, skip_targets=skipped_targets(groups, package.name))
                aggregate_flow_results(flow_results, results[package.name])

        return results


def install_packages(packages: List[InstallPackage], platform: str, workspace_root: Path,
                     platform_registry: Optional[PlatformRegistry] = None,
                     transform_registry=None, dry_run: bool = False,
                     detector: Optional[FormatDetector] = None) -> Dict[str, FlowInstallResult]:
    installer = FlowInstaller(workspace_root, platform_registry, transform_registry, detector=detector)
    return installer.install(packages, platform, dry_run)
