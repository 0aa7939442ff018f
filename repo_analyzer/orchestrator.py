"""Incremental analysis orchestration.

One run moves through scan, diff, dispatch, aggregate and commit. The
change cache decides which agents are due, the worker pool bounds how many
run at once, and the snapshot is only committed after every task joined.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

from .agents import Agent, AgentDeps, create_agent
from .cache import AGENT_NAMES, ChangeCache, ChangeReport, FileRecord, ScanMetrics, scan_files
from .config import AppConfig
from .errors import (
    AgentTaskError,
    AllAgentsFailedError,
    CacheCommitError,
    CancellationError,
    NoAgentsToRunError,
    ScanError,
)
from .llm import ModelInvoker, ResponseCache, build_invoker
from .utils.logging import LogContext, get_logger
from .utils.metrics import OperationMetrics, timed_operation
from .worker_pool import CancelContext, Result, WorkerPool

logger = get_logger("orchestrator")

AgentFactory = Callable[[str, AgentDeps], Agent]


class RunState(str, Enum):
    """Phases of a single orchestrator run."""

    IDLE = "idle"
    SCANNING = "scanning"
    DIFFING = "diffing"
    SHORT_CIRCUIT = "short_circuit"
    DISPATCHING = "dispatching"
    AGGREGATING = "aggregating"
    COMMITTING = "committing"
    DONE = "done"


@dataclass
class RunOptions:
    """Per-invocation parameters supplied by the CLI."""

    force: bool = False
    excluded_agents: frozenset[str] = frozenset()
    max_workers: int = 0
    max_hash_workers: int = 0
    ignore_patterns: list[str] = field(default_factory=list)


@dataclass
class AgentFailure:
    """An agent task that did not produce a report."""

    name: str
    error: BaseException

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, CancellationError)


@dataclass
class RunResult:
    """Outcome of one orchestrator run."""

    successful: list[str] = field(default_factory=list)
    failed: list[AgentFailure] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    scan_metrics: ScanMetrics | None = None
    report: ChangeReport | None = None
    short_circuited: bool = False
    duration: float = 0.0

    @property
    def verdict(self) -> str:
        """``success``, ``partial`` or ``failed``."""
        if not self.failed:
            return "success"
        if self.successful or self.skipped:
            return "partial"
        return "failed"

    @property
    def failed_names(self) -> list[str]:
        return [failure.name for failure in self.failed]


@dataclass
class RunContext:
    """Everything one analysis invocation shares, built once and passed down."""

    config: AppConfig
    repo_path: Path
    change_cache: ChangeCache
    response_cache: ResponseCache | None
    invoker: ModelInvoker
    cancel: CancelContext
    metrics: OperationMetrics

    @classmethod
    def create(
        cls,
        config: AppConfig,
        repo_path: Path | None = None,
        invoker: ModelInvoker | None = None,
        use_response_cache: bool = True,
        timeout: float | None = None,
    ) -> "RunContext":
        """Load both caches and compose the model invoker.

        Args:
            config: Loaded application configuration
            repo_path: Repository to analyze (defaults to ``config.project_root``)
            invoker: Pre-built invoker; when omitted one is built from ``config``
            use_response_cache: Set to False to bypass the LLM response cache
            timeout: Optional deadline for the whole run, in seconds
        """
        repo_path = Path(repo_path or config.project_root).resolve()
        metrics = OperationMetrics()

        change_cache = ChangeCache(repo_path, config.cache.change_cache_file)
        change_cache.load()

        response_cache = None
        if use_response_cache and config.cache.response_cache_enabled:
            response_cache = ResponseCache(
                repo_path / config.cache.response_cache_file,
                ttl_seconds=config.cache.ttl_seconds,
                max_entries=config.cache.max_memory_entries,
            )
            response_cache.load()

        if invoker is None:
            invoker = build_invoker(config, response_cache, metrics)

        return cls(
            config=config,
            repo_path=repo_path,
            change_cache=change_cache,
            response_cache=response_cache,
            invoker=invoker,
            cancel=CancelContext(timeout),
            metrics=metrics,
        )

    def agent_deps(self) -> AgentDeps:
        return AgentDeps(
            repo_path=self.repo_path,
            invoker=self.invoker,
            agent_config=self.config.agent,
            llm_config=self.config.llm,
        )

    @property
    def docs_dir(self) -> Path:
        return self.repo_path / self.config.agent.docs_dir

    def close(self) -> None:
        self.invoker.close()


def aggregate_results(
    names: Sequence[str], results: Sequence[Result]
) -> tuple[list[str], list[AgentFailure]]:
    """Partition positional task results into successful names and failures."""
    successful: list[str] = []
    failed: list[AgentFailure] = []
    for name, result in zip(names, results):
        if result.ok:
            successful.append(name)
        else:
            failed.append(AgentFailure(name=name, error=result.error))
    return successful, failed


class Orchestrator:
    """Runs the analysis agents that the change cache reports as due."""

    def __init__(self, context: RunContext, agent_factory: AgentFactory = create_agent):
        self.context = context
        self.agent_factory = agent_factory
        self.state = RunState.IDLE

    def _enter(self, state: RunState) -> None:
        logger.debug(f"Orchestrator: {self.state.value} -> {state.value}")
        self.state = state

    def run(self, options: RunOptions | None = None) -> RunResult:
        """Execute one incremental analysis run.

        Returns:
            RunResult; check ``verdict`` for partial failures

        Raises:
            NoAgentsToRunError: If every agent is excluded
            AllAgentsFailedError: If every dispatched agent failed and none was skipped
        """
        options = options or RunOptions()
        started = time.perf_counter()
        ctx = self.context
        excluded = set(options.excluded_agents)

        unknown = excluded - set(AGENT_NAMES)
        if unknown:
            logger.warning(f"Ignoring unknown agents in exclusion list: {', '.join(sorted(unknown))}")

        self._enter(RunState.SCANNING)
        files, scan_metrics, scan_ok = self._scan(options)

        self._enter(RunState.DIFFING)
        report: ChangeReport | None = None
        if options.force or not scan_ok:
            if options.force:
                logger.info("Force mode enabled - running full analysis")
            due = [name for name in AGENT_NAMES if name not in excluded]
            skippable: list[str] = []
        else:
            with timed_operation("diff", ctx.metrics):
                report = ctx.change_cache.detect_changes(files)
            self._log_report(report)
            due = [n for n in AGENT_NAMES if n in report.agents_to_run and n not in excluded]
            skippable = [n for n in AGENT_NAMES if n in report.agents_to_skip and n not in excluded]

        if not due:
            self._enter(RunState.SHORT_CIRCUIT)
            if not skippable:
                raise NoAgentsToRunError("No analysis tasks to run (all agents excluded)")
            logger.info("All required agents already up-to-date")
            if report is not None and report.has_changes:
                # Changed files outside every agent's patterns still belong in the snapshot
                self._enter(RunState.COMMITTING)
                self._commit(files, scan_ok, [], [], skippable)
            self._enter(RunState.DONE)
            return RunResult(
                successful=list(skippable),
                skipped=list(skippable),
                scan_metrics=scan_metrics,
                report=report,
                short_circuited=True,
                duration=time.perf_counter() - started,
            )

        if skippable:
            logger.info(f"Skipping unchanged agents: {', '.join(skippable)}")

        self._enter(RunState.DISPATCHING)
        deps = ctx.agent_deps()
        tasks = [self._make_task(name, deps) for name in due]
        pool = WorkerPool(options.max_workers or ctx.config.max_workers)
        with LogContext(f"Running {len(tasks)} analysis agents ({pool.max_workers} workers)", logger):
            with timed_operation("dispatch", ctx.metrics):
                results = pool.run(ctx.cancel, tasks)

        self._enter(RunState.AGGREGATING)
        successful, failed = aggregate_results(due, results)
        for failure in failed:
            ctx.metrics.record_error(type(failure.error).__name__)
            logger.error(f"{failure.name} failed: {failure.error}")
        logger.info(f"Analysis complete: {len(successful)}/{len(due)} successful")

        self._enter(RunState.COMMITTING)
        self._commit(files, scan_ok, successful, failed, skippable)
        self._save_response_cache()

        self._enter(RunState.DONE)
        result = RunResult(
            successful=successful + skippable,
            failed=failed,
            skipped=list(skippable),
            scan_metrics=scan_metrics,
            report=report,
            duration=time.perf_counter() - started,
        )
        if result.verdict == "failed":
            raise AllAgentsFailedError(failed)
        return result

    def _scan(self, options: RunOptions) -> tuple[dict[str, FileRecord], ScanMetrics, bool]:
        ctx = self.context
        ignore = list(ctx.config.scanner.ignore_patterns) + list(options.ignore_patterns)
        hash_workers = options.max_hash_workers or ctx.config.scanner.max_hash_workers
        try:
            with LogContext(f"Scanning {ctx.repo_path}", logger), timed_operation("scan", ctx.metrics):
                files, metrics = scan_files(
                    ctx.repo_path,
                    ignore_patterns=ignore,
                    previous=ctx.change_cache.snapshot,
                    max_hash_workers=hash_workers,
                )
        except ScanError as e:
            logger.warning(f"Failed to scan files, running every agent: {e}")
            return {}, ScanMetrics(), False

        logger.info(
            f"Scanned {metrics.total_files} files "
            f"({metrics.cached_files} cached, {metrics.hashed_files} hashed)"
        )
        return files, metrics, True

    def _log_report(self, report: ChangeReport) -> None:
        if report.is_first_run:
            logger.info("First analysis run - no previous cache")
            return
        logger.info(
            f"{report.reason}: {len(report.added)} new, {len(report.modified)} modified, "
            f"{len(report.deleted)} deleted"
        )

    def _make_task(self, name: str, deps: AgentDeps) -> Callable[[CancelContext], str]:
        docs_dir = self.context.docs_dir

        def task(cancel: CancelContext) -> str:
            logger.info(f"Starting {name}")
            try:
                agent = self.agent_factory(name, deps)
                output = agent.run(cancel)
                agent.save_output(output, docs_dir / (agent.output_file or f"{name}.md"))
            except (AgentTaskError, CancellationError):
                raise
            except Exception as e:
                raise AgentTaskError(name, str(e)) from e
            logger.info(f"{name} completed successfully")
            return output

        return task

    def _commit(
        self,
        files: dict[str, FileRecord],
        scan_ok: bool,
        successful: list[str],
        failed: list[AgentFailure],
        skippable: list[str],
    ) -> None:
        if not scan_ok:
            logger.warning("Skipping change cache update because the scan failed")
            return

        agent_results = {name: True for name in successful}
        agent_results.update({failure.name: False for failure in failed})
        agent_results.update({name: True for name in skippable})
        try:
            with timed_operation("commit", self.context.metrics):
                self.context.change_cache.commit(files, agent_results)
            logger.info("Analysis cache updated")
        except CacheCommitError as e:
            logger.warning(str(e))

    def _save_response_cache(self) -> None:
        cache = self.context.response_cache
        if cache is None:
            return
        try:
            cache.save()
        except OSError as e:
            logger.warning(f"Failed to save response cache: {e}")
