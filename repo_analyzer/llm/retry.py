"""Retry wrapper around a model invoker."""

import logging

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import ModelError
from ..utils.logging import get_logger
from ..worker_pool import CancelContext
from .invoker import ModelInvoker
from .types import CompletionRequest, CompletionResponse

logger = get_logger("llm_retry")


def is_retryable(error: BaseException) -> bool:
    """Rate limits, server errors and connection failures are worth retrying."""
    return isinstance(error, ModelError) and bool(error.retryable)


class RetryingInvoker(ModelInvoker):
    """Retries transient failures of the wrapped invoker with exponential backoff.

    Backoff sleeps wake up early when the run is cancelled, and the next
    attempt then fails with CancellationError instead of calling the model.
    """

    def __init__(
        self,
        inner: ModelInvoker,
        max_attempts: int = 5,
        min_wait: float = 1.0,
        max_wait: float = 30.0,
    ):
        self.inner = inner
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait

    def complete(self, ctx: CancelContext, request: CompletionRequest) -> CompletionResponse:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.min_wait, min=self.min_wait, max=self.max_wait),
            retry=retry_if_exception(is_retryable),
            sleep=ctx.wait,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._attempt, ctx, request)

    def _attempt(self, ctx: CancelContext, request: CompletionRequest) -> CompletionResponse:
        ctx.check()
        return self.inner.complete(ctx, request)

    def close(self) -> None:
        self.inner.close()
