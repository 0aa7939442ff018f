"""Documentation drift detection.

Compares the repository against the change cache without calling a model
and without committing anything, so it is safe to run from CI hooks.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .agents import AGENT_FACTORIES
from .cache import AGENT_NAMES, ChangeCache, ChangeReport, scan_files
from .cache.patterns import relevant_paths
from .config import AppConfig
from .utils.logging import get_logger

logger = get_logger("drift")

AGENT_DISPLAY_NAMES: dict[str, str] = {
    "structure_analyzer": "Structure Analysis",
    "dependency_analyzer": "Dependency Analysis",
    "data_flow_analyzer": "Data Flow Analysis",
    "request_flow_analyzer": "Request Flow Analysis",
    "api_analyzer": "API Analysis",
}

MAJOR_CHANGE_COUNT = 20
MODERATE_CHANGE_COUNT = 10
MAJOR_AGENT_COUNT = 4
MODERATE_AGENT_COUNT = 2


class DriftSeverity(str, Enum):
    """How far the reports lag behind the code."""

    NONE = "none"
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"

    @property
    def exit_code(self) -> int:
        return list(DriftSeverity).index(self)


@dataclass
class AgentDriftStatus:
    """Whether one agent's report is current."""

    name: str
    display_name: str
    has_run: bool = False
    succeeded: bool = False
    output_exists: bool = False
    needs_rerun: bool = False
    affected_files: int = 0
    rerun_reason: str = ""


@dataclass
class DriftReport:
    """Result of a drift check."""

    has_drift: bool = False
    severity: DriftSeverity = DriftSeverity.NONE
    is_first_run: bool = False
    last_analysis_at: float | None = None
    new_files: list[str] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)
    deleted_files: list[str] = field(default_factory=list)
    agent_status: list[AgentDriftStatus] = field(default_factory=list)
    summary: str = ""
    recommendation: str = ""
    docs_dir: str = ""
    cache_file: str = ""

    @property
    def total_changes(self) -> int:
        return len(self.new_files) + len(self.modified_files) + len(self.deleted_files)

    @property
    def agents_needing_rerun(self) -> list[str]:
        return [status.name for status in self.agent_status if status.needs_rerun]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


def check_drift(repo_path: Path, config: AppConfig) -> DriftReport:
    """Scan the repository and report how stale the generated docs are.

    Args:
        repo_path: Repository root
        config: Application configuration (cache locations, scanner settings)

    Returns:
        DriftReport; the change cache file is never written

    Raises:
        ScanError: If the repository cannot be scanned
    """
    repo_path = Path(repo_path)
    change_cache = ChangeCache(repo_path, config.cache.change_cache_file)
    docs_dir = repo_path / config.agent.docs_dir
    report = DriftReport(docs_dir=str(docs_dir), cache_file=str(change_cache.path))

    snapshot = change_cache.load()
    if snapshot.is_empty:
        report.is_first_run = True
        report.has_drift = True
        report.severity = DriftSeverity.MAJOR
        report.summary = "No previous analysis found"
        report.recommendation = "Run 'repo-analyzer analyze' to generate initial documentation"
        return report

    files, _ = scan_files(
        repo_path,
        ignore_patterns=config.scanner.ignore_patterns,
        previous=snapshot,
        max_hash_workers=config.scanner.max_hash_workers,
    )
    changes = change_cache.detect_changes(files)

    report.last_analysis_at = snapshot.last_analysis_at
    report.new_files = sorted(changes.added)
    report.modified_files = sorted(changes.modified)
    report.deleted_files = sorted(changes.deleted)
    report.agent_status = _agent_status(change_cache, changes, docs_dir)
    report.has_drift = changes.has_changes or bool(report.agents_needing_rerun)
    report.severity = drift_severity(report.total_changes, len(report.agents_needing_rerun))
    report.summary = _summary(report)
    report.recommendation = _recommendation(report.severity)

    logger.debug(f"Drift check: {report.severity.value} ({report.summary})")
    return report


def drift_severity(total_changes: int, agents_needing_rerun: int) -> DriftSeverity:
    """Grade drift by the number of changed files and stale agents."""
    if total_changes == 0 and agents_needing_rerun == 0:
        return DriftSeverity.NONE
    if total_changes > MAJOR_CHANGE_COUNT or agents_needing_rerun >= MAJOR_AGENT_COUNT:
        return DriftSeverity.MAJOR
    if total_changes > MODERATE_CHANGE_COUNT or agents_needing_rerun >= MODERATE_AGENT_COUNT:
        return DriftSeverity.MODERATE
    return DriftSeverity.MINOR


def _agent_status(
    change_cache: ChangeCache, changes: ChangeReport, docs_dir: Path
) -> list[AgentDriftStatus]:
    outcomes = change_cache.snapshot.agent_outcomes
    changed = changes.changed_paths
    statuses = []

    for name in AGENT_NAMES:
        outcome = outcomes.get(name)
        output_file = getattr(AGENT_FACTORIES.get(name), "output_file", f"{name}.md")
        status = AgentDriftStatus(
            name=name,
            display_name=AGENT_DISPLAY_NAMES.get(name, name),
            has_run=outcome is not None,
            succeeded=outcome is not None and outcome.succeeded,
            output_exists=(docs_dir / output_file).exists(),
            needs_rerun=name in changes.agents_to_run,
        )
        if status.needs_rerun:
            status.affected_files = len(relevant_paths(name, changed))
            status.rerun_reason = _rerun_reason(status)
        statuses.append(status)

    # Stale agents first, then canonical order
    statuses.sort(key=lambda s: not s.needs_rerun)
    return statuses


def _rerun_reason(status: AgentDriftStatus) -> str:
    if not status.has_run:
        return "Never run"
    if not status.succeeded:
        return "Previous run failed"
    if not status.output_exists:
        return "Output file missing"
    if status.affected_files:
        return f"{status.affected_files} affected file(s) changed"
    return "Related files changed"


def _summary(report: DriftReport) -> str:
    if not report.has_drift:
        return "Documentation is up to date"

    parts = []
    if report.total_changes:
        counts = [
            f"{len(files)} {label}"
            for label, files in (
                ("new", report.new_files),
                ("modified", report.modified_files),
                ("deleted", report.deleted_files),
            )
            if files
        ]
        parts.append(f"{report.total_changes} file(s) changed ({', '.join(counts)})")
    if report.agents_needing_rerun:
        parts.append(f"{len(report.agents_needing_rerun)} agent(s) need re-run")
    return "; ".join(parts)


def _recommendation(severity: DriftSeverity) -> str:
    if severity == DriftSeverity.MAJOR:
        return "Run 'repo-analyzer analyze' now - significant documentation drift detected"
    if severity == DriftSeverity.MODERATE:
        return "Run 'repo-analyzer analyze' soon to update documentation"
    if severity == DriftSeverity.MINOR:
        return "Consider running 'repo-analyzer analyze' to keep documentation current"
    return "No action needed"
