"""Response-cache wrapper around a model invoker."""

from ..errors import CacheKeyError
from ..utils.logging import get_logger
from ..utils.metrics import OperationMetrics
from ..worker_pool import CancelContext
from .cache_key import build_key_request, generate_key
from .invoker import ModelInvoker
from .response_cache import ResponseCache
from .types import CompletionRequest, CompletionResponse

logger = get_logger("llm_cache")


class CachingInvoker(ModelInvoker):
    """Serves identical requests from the response cache.

    Only successful responses are stored. A request that cannot be keyed
    goes straight to the wrapped invoker.
    """

    def __init__(
        self,
        inner: ModelInvoker,
        cache: ResponseCache,
        metrics: OperationMetrics | None = None,
    ):
        self.inner = inner
        self.cache = cache
        self.metrics = metrics

    def complete(self, ctx: CancelContext, request: CompletionRequest) -> CompletionResponse:
        ctx.check()
        try:
            key = generate_key(request)
        except CacheKeyError as e:
            logger.warning(f"Bypassing response cache: {e}")
            return self.inner.complete(ctx, request)

        entry = self.cache.get(key)
        if entry is not None:
            logger.debug(f"Response cache hit {key[:12]}")
            if self.metrics is not None:
                self.metrics.increment("response_cache_hits")
            return CompletionResponse.from_dict(entry.response)

        response = self.inner.complete(ctx, request)
        self.cache.put(key, response.to_dict(), build_key_request(request))
        if self.metrics is not None:
            self.metrics.increment("response_cache_misses")
        return response

    def close(self) -> None:
        self.inner.close()
