"""Repo Analyzer - Incremental, cache-aware repository analysis with LLM agents."""

__version__ = "0.1.0"
__author__ = "Repo Analyzer Team"

from .config import AppConfig, load_config
from .orchestrator import Orchestrator, RunContext, RunOptions, RunResult

__all__ = [
    "AppConfig",
    "load_config",
    "Orchestrator",
    "RunContext",
    "RunOptions",
    "RunResult",
    "__version__",
]
