"""Model invocation capability shared by the client and its wrappers."""

from abc import ABC, abstractmethod

from ..worker_pool import CancelContext
from .types import CompletionRequest, CompletionResponse


class ModelInvoker(ABC):
    """Anything that can turn a CompletionRequest into a CompletionResponse."""

    @abstractmethod
    def complete(self, ctx: CancelContext, request: CompletionRequest) -> CompletionResponse:
        """Run one completion.

        Raises:
            CancellationError: If ``ctx`` is cancelled
            ModelError: If the provider call fails
        """
        ...

    def close(self) -> None:
        """Release network resources, if any."""
        pass
