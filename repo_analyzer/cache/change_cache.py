"""Persistent file-change cache driving incremental analysis.

The cache remembers the fingerprint of every scanned file and, per agent,
whether its last run succeeded and which input it saw. Losing the cache is
never fatal: a missing or broken file simply means a full run.
"""

import time
from pathlib import Path
from typing import Any, Mapping

from ..errors import CacheCommitError, CacheLoadError
from ..utils.logging import get_logger
from .models import AgentOutcome, ChangeCacheSnapshot, ChangeReport, FileRecord
from .patterns import AGENT_NAMES, agent_fingerprint
from .storage import atomic_write_json, read_json

logger = get_logger("change_cache")

DEFAULT_CACHE_FILE = ".ai/analysis_cache.json"


class ChangeCache:
    """Change cache for one repository.

    The orchestrator is the only writer; it loads the snapshot at the start
    of a run and commits a replacement once every agent task has finished.
    """

    def __init__(
        self,
        root: Path,
        cache_file: str = DEFAULT_CACHE_FILE,
        agent_names: tuple[str, ...] = AGENT_NAMES,
    ):
        """Initialize the cache.

        Args:
            root: Repository root
            cache_file: Cache location relative to the root
            agent_names: Agents whose rerun decision the cache makes
        """
        self.root = Path(root)
        self.path = self.root / cache_file
        self.agent_names = agent_names
        self.snapshot = ChangeCacheSnapshot()

    def load(self) -> ChangeCacheSnapshot:
        """Load the previous snapshot, falling back to an empty one."""
        try:
            self.snapshot = self._read()
            logger.debug(f"Loaded change cache with {len(self.snapshot.files)} files")
        except CacheLoadError as e:
            logger.warning(f"Ignoring change cache: {e}")
            self.snapshot = ChangeCacheSnapshot()
        return self.snapshot

    def _read(self) -> ChangeCacheSnapshot:
        if not self.path.exists():
            return ChangeCacheSnapshot()

        try:
            data = read_json(self.path)
        except (OSError, ValueError) as e:
            raise CacheLoadError(f"cannot read {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise CacheLoadError(f"unexpected document in {self.path}")
        if data.get("version") != ChangeCacheSnapshot.VERSION:
            raise CacheLoadError(
                f"version {data.get('version')!r} != {ChangeCacheSnapshot.VERSION}"
            )

        try:
            return ChangeCacheSnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CacheLoadError(f"malformed entry in {self.path}: {e}") from e

    def detect_changes(self, current_files: Mapping[str, FileRecord]) -> ChangeReport:
        """Diff the current scan against the loaded snapshot.

        Args:
            current_files: Result of the current scan

        Returns:
            ChangeReport with file-level diff and per-agent run/skip sets
        """
        previous = self.snapshot.files
        report = ChangeReport()

        for path, record in current_files.items():
            prior = previous.get(path)
            if prior is None:
                report.added.add(path)
            elif prior.content_hash != record.content_hash:
                report.modified.add(path)
        report.deleted = {path for path in previous if path not in current_files}

        if self.snapshot.is_empty:
            report.is_first_run = True
            report.agents_to_run = set(self.agent_names)
            report.reason = "First analysis run"
            return report

        hashes = _hashes(current_files)
        for name in self.agent_names:
            outcome = self.snapshot.agent_outcomes.get(name)
            if outcome is None or not outcome.succeeded:
                report.agents_to_run.add(name)
            elif outcome.input_fingerprint != agent_fingerprint(name, hashes):
                report.agents_to_run.add(name)
            else:
                report.agents_to_skip.add(name)

        if not report.has_changes:
            report.reason = "No files changed since last analysis"
        else:
            report.reason = (
                f"{len(report.changed_paths)} files changed, "
                f"{len(report.agents_to_run)} agents need re-run"
            )
        return report

    def commit(
        self,
        current_files: Mapping[str, FileRecord],
        agent_results: Mapping[str, bool],
    ) -> None:
        """Record the run's outcome and persist the snapshot atomically.

        Agents missing from ``agent_results`` keep their previous outcome.

        Raises:
            CacheCommitError: If the snapshot cannot be written
        """
        hashes = _hashes(current_files)
        outcomes = dict(self.snapshot.agent_outcomes)
        for name, succeeded in agent_results.items():
            outcomes[name] = AgentOutcome(
                succeeded=succeeded,
                input_fingerprint=agent_fingerprint(name, hashes),
            )

        snapshot = ChangeCacheSnapshot(
            files=dict(sorted(current_files.items())),
            last_analysis_at=time.time(),
            agent_outcomes=dict(sorted(outcomes.items())),
        )
        try:
            atomic_write_json(self.path, snapshot.to_dict())
        except (OSError, TypeError, ValueError) as e:
            raise CacheCommitError(f"Failed to save change cache {self.path}: {e}") from e

        self.snapshot = snapshot
        logger.debug(f"Committed change cache with {len(snapshot.files)} files")

    def stats(self) -> dict[str, Any]:
        """Summary of the loaded snapshot for display."""
        return {
            "path": str(self.path),
            "exists": self.path.exists(),
            "total_files": len(self.snapshot.files),
            "last_analysis_at": self.snapshot.last_analysis_at,
            "agents": {
                name: outcome.succeeded
                for name, outcome in self.snapshot.agent_outcomes.items()
            },
        }

    def clear(self) -> bool:
        """Delete the cache file. Returns True if a file was removed."""
        self.snapshot = ChangeCacheSnapshot()
        if not self.path.exists():
            return False
        self.path.unlink()
        return True


def _hashes(files: Mapping[str, FileRecord]) -> dict[str, str]:
    return {path: record.content_hash for path, record in files.items()}
