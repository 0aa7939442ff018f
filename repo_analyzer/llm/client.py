"""HTTP client for OpenAI-compatible chat completion APIs."""

import json
import threading
from typing import Any

import httpx

from ..config import LLMConfig
from ..errors import ModelConnectionError, ModelResponseError, ModelServiceError
from ..utils.logging import get_logger
from ..utils.metrics import OperationMetrics, timed_operation
from ..worker_pool import CancelContext
from .invoker import ModelInvoker
from .types import (
    CompletionRequest,
    CompletionResponse,
    Message,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)

logger = get_logger("llm_client")


class OpenAICompatibleInvoker(ModelInvoker):
    """Client for the ``/chat/completions`` endpoint.

    One sync httpx client is shared by all worker threads; httpx clients
    are safe to use concurrently.
    """

    def __init__(self, config: LLMConfig, metrics: OperationMetrics | None = None):
        self.config = config
        self.metrics = metrics
        self._client: httpx.Client | None = None
        self._client_lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(
                    base_url=self.config.api_base,
                    timeout=httpx.Timeout(self.config.timeout),
                    headers={"Authorization": f"Bearer {self.config.api_key}"},
                )
            return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        with self._client_lock:
            if self._client:
                self._client.close()
                self._client = None

    def complete(self, ctx: CancelContext, request: CompletionRequest) -> CompletionResponse:
        ctx.check()
        client = self._get_client()
        body = self.build_body(request)

        with timed_operation("llm_inference", self.metrics):
            try:
                response = client.post("/chat/completions", json=body)
            except httpx.HTTPError as e:
                raise ModelConnectionError(f"Request to {self.config.api_base} failed: {e}") from e

        if response.status_code >= 400:
            raise ModelServiceError(
                f"Provider returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text[:500],
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ModelResponseError(f"Response is not JSON: {e}") from e

        result = self.parse_response(data)
        if self.metrics is not None:
            self.metrics.record_tokens(result.usage.input_tokens, result.usage.output_tokens)
            self.metrics.increment("llm_calls")
        return result

    def build_body(self, request: CompletionRequest) -> dict[str, Any]:
        """Translate a CompletionRequest into the provider's JSON body."""
        messages: list[dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend(_message_to_wire(msg) for msg in request.messages)

        body: dict[str, Any] = {
            "model": self.config.model_name,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if request.tools:
            body["tools"] = [_tool_to_wire(tool) for tool in request.tools]
        return body

    @staticmethod
    def parse_response(data: dict[str, Any]) -> CompletionResponse:
        """Extract content, tool calls and usage from a provider response.

        Raises:
            ModelResponseError: If the payload lacks the expected structure
        """
        try:
            choice = data["choices"][0]
            message = choice["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise ModelResponseError(f"Malformed completion payload: {e}") from e

        tool_calls = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function", {})
            arguments = function.get("arguments") or "{}"
            try:
                parsed = json.loads(arguments) if isinstance(arguments, str) else arguments
            except json.JSONDecodeError:
                logger.warning(f"Tool call {function.get('name')} has invalid JSON arguments")
                parsed = {}
            if not isinstance(parsed, dict):
                logger.warning(f"Tool call {function.get('name')} arguments are not an object")
                parsed = {}
            tool_calls.append(
                ToolCall(id=raw.get("id", ""), name=function.get("name", ""), arguments=parsed)
            )

        usage = data.get("usage") or {}
        return CompletionResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            usage=TokenUsage(
                input_tokens=usage.get("prompt_tokens", 0),
                output_tokens=usage.get("completion_tokens", 0),
            ),
            finish_reason=choice.get("finish_reason") or "stop",
        )


def _message_to_wire(msg: Message) -> dict[str, Any]:
    wire: dict[str, Any] = {"role": msg.role, "content": msg.content}
    if msg.role == "tool":
        wire["tool_call_id"] = msg.tool_call_id
    if msg.tool_calls:
        wire["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
            }
            for call in msg.tool_calls
        ]
    return wire


def _tool_to_wire(tool: ToolDefinition) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }
