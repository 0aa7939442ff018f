"""Tests for the file-change cache."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from repo_analyzer.cache import AGENT_NAMES, ChangeCache, FileRecord
from repo_analyzer.cache.models import ChangeCacheSnapshot
from repo_analyzer.cache.patterns import (
    agent_fingerprint,
    aggregate_fingerprint,
    match_pattern,
    relevant_paths,
)
from repo_analyzer.errors import CacheCommitError

ALL_SUCCEEDED = {name: True for name in AGENT_NAMES}


def make_files(**hashes: str) -> dict[str, FileRecord]:
    """Build a file map from path=hash keyword pairs (``__`` stands for ``/``)."""
    files = {}
    for key, digest in hashes.items():
        path = key.replace("__", "/").replace("_DOT_", ".")
        files[path] = FileRecord(path=path, content_hash=digest, size=10, modified_ns=1)
    return files


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """Create an empty repository root."""
    root = tmp_path / "repo"
    root.mkdir()
    return root


@pytest.fixture
def base_files() -> dict[str, FileRecord]:
    """A small file set touching every agent's patterns."""
    return make_files(
        main_DOT_py="h1",
        app__api_handler_DOT_py="h2",
        requirements_DOT_txt="h3",
        README_DOT_md="h4",
    )


@pytest.fixture
def committed_cache(repo: Path, base_files) -> ChangeCache:
    """A cache whose snapshot was committed with every agent successful."""
    cache = ChangeCache(repo)
    cache.load()
    cache.commit(base_files, ALL_SUCCEEDED)
    reloaded = ChangeCache(repo)
    reloaded.load()
    return reloaded


# =============================================================================
# Pattern Tests
# =============================================================================


class TestPatterns:
    """Tests for agent file patterns and fingerprints."""

    def test_match_extension_pattern(self):
        """Test *.ext patterns against base names."""
        assert match_pattern("src/app/Main.PY", "*.py")
        assert not match_pattern("src/app/main.pyc", "*.py")

    def test_match_keyword_pattern(self):
        """Test *keyword*.ext patterns."""
        assert match_pattern("internal/user_handler.go", "*handler*.go")
        assert not match_pattern("internal/user.go", "*handler*.go")

    def test_match_exact_name(self):
        """Test exact manifest names are case-insensitive."""
        assert match_pattern("svc/go.mod", "go.mod")
        assert match_pattern("Requirements.TXT", "requirements.txt")

    def test_relevant_paths_for_dependency_agent(self, base_files):
        """Test that the dependency agent only sees manifest files."""
        assert relevant_paths("dependency_analyzer", base_files) == ["requirements.txt"]

    def test_unknown_agent_sees_all_files(self, base_files):
        """Test that agents without patterns depend on every file."""
        assert relevant_paths("custom_agent", base_files) == sorted(base_files)

    def test_aggregate_fingerprint_is_order_independent(self):
        """Test that mapping order does not change the fingerprint."""
        first = aggregate_fingerprint({"a": "1", "b": "2"})
        second = aggregate_fingerprint({"b": "2", "a": "1"})

        assert first == second
        assert len(first) == 64

    def test_agent_fingerprint_ignores_irrelevant_files(self, base_files):
        """Test that README changes do not touch the dependency fingerprint."""
        hashes = {p: r.content_hash for p, r in base_files.items()}
        changed = dict(hashes, **{"README.md": "other"})

        assert agent_fingerprint("dependency_analyzer", hashes) == agent_fingerprint(
            "dependency_analyzer", changed
        )


# =============================================================================
# Load Tests
# =============================================================================


class TestLoad:
    """Tests for ChangeCache.load."""

    def test_missing_file_gives_empty_snapshot(self, repo: Path):
        """Test that a missing cache file is not an error."""
        snapshot = ChangeCache(repo).load()

        assert snapshot.is_empty
        assert snapshot.files == {}

    def test_corrupt_file_gives_empty_snapshot(self, repo: Path):
        """Test that corrupt JSON is treated as an empty cache."""
        path = repo / ".ai" / "analysis_cache.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        snapshot = ChangeCache(repo).load()

        assert snapshot.is_empty

    def test_version_mismatch_gives_empty_snapshot(self, repo: Path):
        """Test that a cache from another version is ignored."""
        path = repo / ".ai" / "analysis_cache.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"version": 99, "files": {}, "last_analysis_at": 5.0}))

        assert ChangeCache(repo).load().is_empty

    def test_malformed_entry_gives_empty_snapshot(self, repo: Path):
        """Test that structurally broken entries are treated as cache loss."""
        path = repo / ".ai" / "analysis_cache.json"
        path.parent.mkdir(parents=True)
        path.write_text(
            json.dumps({"version": 1, "files": {"a.py": {"size": 1}}, "last_analysis_at": 5.0})
        )

        assert ChangeCache(repo).load().is_empty

    def test_round_trip(self, committed_cache: ChangeCache, base_files):
        """Test that a committed snapshot loads back with outcomes."""
        snapshot = committed_cache.snapshot

        assert snapshot.files == base_files
        assert snapshot.last_analysis_at is not None
        assert set(snapshot.agent_outcomes) == set(AGENT_NAMES)
        assert all(outcome.succeeded for outcome in snapshot.agent_outcomes.values())


# =============================================================================
# DetectChanges Tests
# =============================================================================


class TestDetectChanges:
    """Tests for ChangeCache.detect_changes."""

    def test_first_run_runs_every_agent(self, repo: Path, base_files):
        """Test that an empty cache marks all agents due and all files added."""
        cache = ChangeCache(repo)
        cache.load()

        report = cache.detect_changes(base_files)

        assert report.is_first_run
        assert report.agents_to_run == set(AGENT_NAMES)
        assert report.agents_to_skip == set()
        assert report.added == set(base_files)

    def test_unchanged_files_have_no_changes(self, committed_cache: ChangeCache, base_files):
        """Test that diffing a snapshot against its own files finds nothing."""
        report = committed_cache.detect_changes(base_files)

        assert report.has_changes is False
        assert report.agents_to_run == set()
        assert report.agents_to_skip == set(AGENT_NAMES)

    def test_empty_file_set_has_no_changes_against_itself(self, repo: Path):
        """Test the no-change property for an empty file set."""
        cache = ChangeCache(repo)
        cache.load()
        cache.commit({}, ALL_SUCCEEDED)

        report = cache.detect_changes({})

        assert report.has_changes is False
        assert report.agents_to_run == set()

    def test_added_file_is_reported(self, committed_cache: ChangeCache, base_files):
        """Test that a new path shows up in added."""
        current = dict(base_files, **make_files(app__models__order_DOT_py="h9"))

        report = committed_cache.detect_changes(current)

        assert "app/models/order.py" in report.added
        assert report.has_changes

    def test_modified_and_deleted_files(self, committed_cache: ChangeCache, base_files):
        """Test modified (hash differs) and deleted paths."""
        current = dict(base_files)
        current["main.py"] = FileRecord("main.py", "changed", 11, 2)
        del current["README.md"]

        report = committed_cache.detect_changes(current)

        assert report.modified == {"main.py"}
        assert report.deleted == {"README.md"}
        assert report.added == set()

    def test_only_affected_agents_rerun(self, committed_cache: ChangeCache, base_files):
        """Test that a manifest change reruns the dependency agent only."""
        current = dict(base_files)
        current["requirements.txt"] = FileRecord("requirements.txt", "new", 12, 3)

        report = committed_cache.detect_changes(current)

        assert report.agents_to_run == {"dependency_analyzer"}
        assert "data_flow_analyzer" in report.agents_to_skip

    def test_handler_change_reruns_flow_and_api_agents(self, committed_cache, base_files):
        """Test that a handler change affects source, request-flow and API agents."""
        current = dict(base_files)
        current["app/api_handler.py"] = FileRecord("app/api_handler.py", "new", 12, 3)

        report = committed_cache.detect_changes(current)

        assert report.agents_to_run == {
            "structure_analyzer",
            "data_flow_analyzer",
            "request_flow_analyzer",
            "api_analyzer",
        }
        assert report.agents_to_skip == {"dependency_analyzer"}

    def test_failed_agent_reruns_without_changes(self, repo: Path, base_files):
        """Test that a previously failed agent is due even when nothing changed."""
        cache = ChangeCache(repo)
        cache.load()
        cache.commit(base_files, dict(ALL_SUCCEEDED, api_analyzer=False))

        report = cache.detect_changes(base_files)

        assert report.has_changes is False
        assert report.agents_to_run == {"api_analyzer"}

    def test_agent_without_outcome_reruns(self, repo: Path, base_files):
        """Test that an agent never recorded is due."""
        cache = ChangeCache(repo)
        cache.load()
        partial = {name: True for name in AGENT_NAMES if name != "structure_analyzer"}
        cache.commit(base_files, partial)

        report = cache.detect_changes(base_files)

        assert report.agents_to_run == {"structure_analyzer"}


# =============================================================================
# Commit Tests
# =============================================================================


class TestCommit:
    """Tests for ChangeCache.commit."""

    def test_commit_writes_json_document(self, repo: Path, base_files):
        """Test the on-disk layout of the change cache."""
        cache = ChangeCache(repo)
        cache.commit(base_files, {"api_analyzer": True})

        data = json.loads((repo / ".ai" / "analysis_cache.json").read_text())

        assert data["version"] == 1
        assert data["files"]["main.py"] == {"hash": "h1", "size": 10, "modified_ns": 1}
        assert data["agent_outcomes"]["api_analyzer"]["succeeded"] is True
        assert len(data["agent_outcomes"]["api_analyzer"]["input_fingerprint"]) == 64
        assert isinstance(data["last_analysis_at"], float)

    def test_commit_is_idempotent_apart_from_timestamp(self, repo: Path, base_files):
        """Test that committing the same input twice gives the same bytes."""
        cache = ChangeCache(repo)
        path = repo / ".ai" / "analysis_cache.json"

        with patch("repo_analyzer.cache.change_cache.time.time", return_value=1000.0):
            cache.commit(base_files, ALL_SUCCEEDED)
        first = path.read_bytes()
        with patch("repo_analyzer.cache.change_cache.time.time", return_value=1000.0):
            cache.commit(base_files, ALL_SUCCEEDED)
        second = path.read_bytes()

        assert first == second

    def test_commit_idempotent_ignoring_timestamp_field(self, repo: Path, base_files):
        """Test idempotence with real timestamps by dropping the timestamp field."""
        cache = ChangeCache(repo)
        path = repo / ".ai" / "analysis_cache.json"

        cache.commit(base_files, ALL_SUCCEEDED)
        first = json.loads(path.read_text())
        cache.commit(base_files, ALL_SUCCEEDED)
        second = json.loads(path.read_text())

        first.pop("last_analysis_at")
        second.pop("last_analysis_at")
        assert first == second

    def test_unlisted_agents_keep_previous_outcome(self, committed_cache: ChangeCache, base_files):
        """Test that agents absent from results are not touched."""
        before = committed_cache.snapshot.agent_outcomes["api_analyzer"]
        current = dict(base_files, **make_files(new_DOT_py="h7"))

        committed_cache.commit(current, {"structure_analyzer": True})

        assert committed_cache.snapshot.agent_outcomes["api_analyzer"] == before

    def test_commit_leaves_no_temp_files(self, repo: Path, base_files):
        """Test that the atomic write cleans up after itself."""
        ChangeCache(repo).commit(base_files, ALL_SUCCEEDED)

        assert [p.name for p in (repo / ".ai").iterdir()] == ["analysis_cache.json"]

    def test_commit_failure_raises_and_keeps_snapshot(self, repo: Path, base_files):
        """Test that a write failure raises CacheCommitError without mutating state."""
        cache = ChangeCache(repo)
        cache.load()

        with patch(
            "repo_analyzer.cache.change_cache.atomic_write_json",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(CacheCommitError):
                cache.commit(base_files, ALL_SUCCEEDED)

        assert cache.snapshot == ChangeCacheSnapshot()

    def test_clear_removes_file(self, committed_cache: ChangeCache):
        """Test clear deletes the cache file once."""
        assert committed_cache.clear() is True
        assert committed_cache.clear() is False
        assert committed_cache.snapshot.is_empty

    def test_stats(self, committed_cache: ChangeCache, base_files):
        """Test stats summary."""
        stats = committed_cache.stats()

        assert stats["exists"] is True
        assert stats["total_files"] == len(base_files)
        assert stats["agents"]["dependency_analyzer"] is True
