"""Shared fixtures for repo_analyzer tests."""

import logging
import threading
from pathlib import Path
from typing import Callable

import pytest

from repo_analyzer.config import AppConfig
from repo_analyzer.llm.invoker import ModelInvoker
from repo_analyzer.llm.types import CompletionRequest, CompletionResponse, TokenUsage
from repo_analyzer.worker_pool import CancelContext

# ============================================================================
# Path Fixtures
# ============================================================================


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for test files."""
    return tmp_path


@pytest.fixture
def sample_repo(tmp_path: Path) -> Path:
    """Create a small repository with sources, manifests, ignored and binary files."""
    repo = tmp_path / "repo"
    (repo / "app" / "handlers").mkdir(parents=True)
    (repo / "app" / "models").mkdir(parents=True)
    (repo / "node_modules" / "left-pad").mkdir(parents=True)
    (repo / ".git").mkdir()
    (repo / "assets").mkdir()

    (repo / "main.py").write_text("from app import run\n\nrun()\n")
    (repo / "requirements.txt").write_text("httpx\nrich\n")
    (repo / "app" / "__init__.py").write_text("def run():\n    pass\n")
    (repo / "app" / "handlers" / "user_handler.py").write_text(
        "def get_user(request):\n    return {'id': 1}\n"
    )
    (repo / "app" / "models" / "user.py").write_text("class User:\n    id: int\n")
    (repo / "node_modules" / "left-pad" / "index.js").write_text("module.exports = 1\n")
    (repo / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    (repo / "assets" / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00")
    (repo / "assets" / "blob.dat").write_bytes(b"abc\x00def")
    return repo


# ============================================================================
# Config Fixtures
# ============================================================================


@pytest.fixture
def app_config(sample_repo: Path) -> AppConfig:
    """Configuration pointing at the sample repository, with fast retries."""
    config = AppConfig(project_root=sample_repo)
    config.llm.retry_min_wait = 0.0
    config.llm.retry_max_wait = 0.0
    return config


# ============================================================================
# Model Invoker Fixtures
# ============================================================================


class ScriptedInvoker(ModelInvoker):
    """Invoker that answers from a callable and records every request."""

    def __init__(self, respond: Callable[[CompletionRequest], CompletionResponse]):
        self.respond = respond
        self.requests: list[CompletionRequest] = []
        self._lock = threading.Lock()
        self.closed = False

    def complete(self, ctx: CancelContext, request: CompletionRequest) -> CompletionResponse:
        ctx.check()
        with self._lock:
            self.requests.append(request)
        return self.respond(request)

    def close(self) -> None:
        self.closed = True


def markdown_response(text: str = "# Report\n\nAll good.") -> CompletionResponse:
    return CompletionResponse(content=text, usage=TokenUsage(input_tokens=10, output_tokens=5))


@pytest.fixture
def scripted_invoker() -> ScriptedInvoker:
    """Invoker that immediately answers every request with a markdown report."""
    return ScriptedInvoker(lambda request: markdown_response())


@pytest.fixture
def invoker_factory() -> Callable[..., ScriptedInvoker]:
    """Build invokers with a custom answer function."""
    return ScriptedInvoker


@pytest.fixture(autouse=True)
def reset_repo_analyzer_logging():
    """Keep handlers installed by setup_logging from leaking between tests."""
    yield
    logging.getLogger("repo_analyzer").handlers.clear()
