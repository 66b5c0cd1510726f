"""
Cross-package conflict detection for one install pass.

Every package's replace-merge flows are resolved to concrete target paths.
A target written by more than one package is a conflict: the highest
priority writer wins (ties: the package registered first) and the others
are skipped for that target. Conflicts are returned as ConflictReport
values and never raised.

Deep, shallow and composite targets are shared between packages and are not
tracked here.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from .candidate_groups import CandidateGroups, by_priority
from .conditions import evaluate_condition
from .errors import FlowEngineError
from .flow_executor import FlowExecutor
from .flow_models import Flow, FlowContext, MergeStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileTargetWriter:
    package_name: str
    priority: int


@dataclass
class ConflictPackage:
    package_name: str
    priority: int
    chosen: bool


@dataclass
class ConflictReport:
    target_path: str
    packages: List[ConflictPackage] = field(default_factory=list)
    message: str = ''

    @property
    def winner(self) -> Optional[str]:
        for package in self.packages:
            if package.chosen:
                return package.package_name
        return None

    @property
    def losers(self) -> List[str]:
        return [p.package_name for p in self.packages if not p.chosen]


def create_target_groups() -> CandidateGroups:
    return CandidateGroups(by_priority(lambda writer: writer.priority))


def track_target_files(groups: CandidateGroups, package_name: str, priority: int,
                       flows: Iterable[Flow], context: FlowContext,
                       executor: Optional[FlowExecutor] = None):
    """
    Record the concrete targets a package's replace flows will write.

    Args:
        groups: Target groups for this install pass (mutated)
        package_name: Writing package
        priority: Its priority (higher wins)
        flows: Applicable flows
        context: The package's flow context
        executor: Executor used for source discovery and target resolution
    """
    executor = executor or FlowExecutor()
    writer = FileTargetWriter(package_name, priority)
    seen: Set[str] = set()
    for flow in flows:
        if flow.merge_strategy != MergeStrategy.REPLACE:
            continue
        try:
            if not evaluate_condition(flow.when, context):
                continue
            for match in executor.discover_sources(flow, context):
                target = executor.resolve_target(flow, match, context)
                if target not in seen:
                    seen.add(target)
                    groups.add(target, writer)
        except FlowEngineError as e:
            # the flow itself reports this error when it runs
            logger.debug("Not tracking targets of %s for %s: %s", flow.label, package_name, e)


def generate_conflict_reports(groups: CandidateGroups) -> List[ConflictReport]:
    """One report per target with more than one writer."""
    reports = []
    for target_path, writers in groups.contested():
        winner, losers = writers[0], writers[1:]
        report = ConflictReport(
            target_path=target_path,
            packages=[
                ConflictPackage(w.package_name, w.priority, chosen=(i == 0))
                for i, w in enumerate(writers)
            ],
            message=(
                f"Conflict in {target_path}: {winner.package_name} (priority {winner.priority}) "
                f"overwrites {', '.join(w.package_name for w in losers)}"
            ),
        )
        logger.warning(report.message)
        reports.append(report)
    return reports


def skipped_targets(groups: CandidateGroups, package_name: str) -> Set[str]:
    """Targets package_name writes to but does not win."""
    skipped = set()
    for target_path, writers in groups.contested():
        if writers[0].package_name != package_name and \
                any(w.package_name == package_name for w in writers):
            skipped.add(target_path)
    return skipped
