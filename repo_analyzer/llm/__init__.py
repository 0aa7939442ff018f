"""Model invocation: provider client, retry and response-cache wrappers."""

from ..config import AppConfig
from ..utils.metrics import OperationMetrics
from .cache_key import CacheKeyRequest, build_key_request, generate_key
from .caching import CachingInvoker
from .client import OpenAICompatibleInvoker
from .invoker import ModelInvoker
from .response_cache import CacheStats, ResponseCache, ResponseCacheEntry
from .retry import RetryingInvoker
from .types import (
    CompletionRequest,
    CompletionResponse,
    Message,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)


def build_invoker(
    config: AppConfig,
    response_cache: ResponseCache | None = None,
    metrics: OperationMetrics | None = None,
) -> ModelInvoker:
    """Compose the provider client with retries and, optionally, caching.

    Cache hits skip the retry layer entirely.
    """
    invoker: ModelInvoker = OpenAICompatibleInvoker(config.llm, metrics=metrics)
    invoker = RetryingInvoker(
        invoker,
        max_attempts=config.llm.max_retries,
        min_wait=config.llm.retry_min_wait,
        max_wait=config.llm.retry_max_wait,
    )
    if response_cache is not None:
        invoker = CachingInvoker(invoker, response_cache, metrics=metrics)
    return invoker


__all__ = [
    "CacheKeyRequest",
    "CacheStats",
    "CachingInvoker",
    "CompletionRequest",
    "CompletionResponse",
    "Message",
    "ModelInvoker",
    "OpenAICompatibleInvoker",
    "ResponseCache",
    "ResponseCacheEntry",
    "RetryingInvoker",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
    "build_invoker",
    "build_key_request",
    "generate_key",
]
