"""Data models for the file-change cache."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class FileRecord:
    """Fingerprint of one repository file at scan time."""

    path: str
    content_hash: str
    size: int
    modified_ns: int

    def same_stat(self, size: int, modified_ns: int) -> bool:
        """Whether size and mtime still match, so the hash can be reused."""
        return self.size == size and self.modified_ns == modified_ns

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary (path is the enclosing map key)."""
        return {
            "hash": self.content_hash,
            "size": self.size,
            "modified_ns": self.modified_ns,
        }

    @classmethod
    def from_dict(cls, path: str, data: dict[str, Any]) -> "FileRecord":
        """Deserialize from dictionary."""
        return cls(
            path=path,
            content_hash=data["hash"],
            size=int(data["size"]),
            modified_ns=int(data["modified_ns"]),
        )


@dataclass(frozen=True)
class AgentOutcome:
    """Last recorded result of an agent and the input it saw."""

    succeeded: bool
    input_fingerprint: str

    def to_dict(self) -> dict[str, Any]:
        return {"succeeded": self.succeeded, "input_fingerprint": self.input_fingerprint}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentOutcome":
        return cls(
            succeeded=bool(data["succeeded"]),
            input_fingerprint=str(data.get("input_fingerprint", "")),
        )


@dataclass
class ChangeCacheSnapshot:
    """Persisted state of the previous analysis run."""

    VERSION = 1

    files: dict[str, FileRecord] = field(default_factory=dict)
    last_analysis_at: float | None = None
    agent_outcomes: dict[str, AgentOutcome] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.last_analysis_at is None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "version": self.VERSION,
            "last_analysis_at": self.last_analysis_at,
            "files": {path: record.to_dict() for path, record in self.files.items()},
            "agent_outcomes": {
                name: outcome.to_dict() for name, outcome in self.agent_outcomes.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeCacheSnapshot":
        """Deserialize from dictionary.

        Raises:
            KeyError, TypeError, ValueError: On malformed data
        """
        return cls(
            files={
                path: FileRecord.from_dict(path, record)
                for path, record in data.get("files", {}).items()
            },
            last_analysis_at=data.get("last_analysis_at"),
            agent_outcomes={
                name: AgentOutcome.from_dict(outcome)
                for name, outcome in data.get("agent_outcomes", {}).items()
            },
        )


@dataclass
class ChangeReport:
    """Diff between the loaded snapshot and the current scan."""

    added: set[str] = field(default_factory=set)
    modified: set[str] = field(default_factory=set)
    deleted: set[str] = field(default_factory=set)
    agents_to_run: set[str] = field(default_factory=set)
    agents_to_skip: set[str] = field(default_factory=set)
    is_first_run: bool = False
    reason: str = ""

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.deleted)

    @property
    def changed_paths(self) -> set[str]:
        return self.added | self.modified | self.deleted


@dataclass
class ScanMetrics:
    """Cache effectiveness of a file scan."""

    total_files: int = 0
    cached_files: int = 0
    hashed_files: int = 0
    skipped_binary: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def cache_hit_rate(self) -> float:
        """Percentage of files whose hash was reused."""
        if self.total_files == 0:
            return 0.0
        return self.cached_files / self.total_files * 100
