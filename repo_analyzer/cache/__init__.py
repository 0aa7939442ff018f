"""File-change cache for incremental analysis."""

from .change_cache import ChangeCache
from .models import AgentOutcome, ChangeCacheSnapshot, ChangeReport, FileRecord, ScanMetrics
from .patterns import AGENT_FILE_PATTERNS, AGENT_NAMES, agent_fingerprint
from .scanner import scan_files

__all__ = [
    "AGENT_FILE_PATTERNS",
    "AGENT_NAMES",
    "AgentOutcome",
    "ChangeCache",
    "ChangeCacheSnapshot",
    "ChangeReport",
    "FileRecord",
    "ScanMetrics",
    "agent_fingerprint",
    "scan_files",
]
