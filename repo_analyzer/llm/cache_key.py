"""Canonical cache keys for model requests.

Two requests that mean the same thing must hash to the same key: surrounding
whitespace is trimmed and tools are sorted by name. Conversation order and
sampling temperature stay significant; the completion budget does not take
part in the key.
"""

import hashlib
import json
from dataclasses import asdict, dataclass, field
from typing import Any

from ..errors import CacheKeyError
from .types import CompletionRequest


@dataclass
class CacheKeyMessage:
    role: str
    content: str
    tool_call_id: str = ""
    tool_calls: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class CacheKeyTool:
    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class CacheKeyRequest:
    """Hashable projection of a CompletionRequest."""

    system_prompt: str
    messages: list[CacheKeyMessage]
    tools: list[CacheKeyTool]
    temperature: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_key_request(request: CompletionRequest) -> CacheKeyRequest:
    """Project a request onto the fields that affect its meaning."""
    messages = [
        CacheKeyMessage(
            role=msg.role,
            content=msg.content.strip(),
            tool_call_id=msg.tool_call_id,
            tool_calls=[
                {"id": call.id, "name": call.name, "arguments": call.arguments}
                for call in msg.tool_calls
            ],
        )
        for msg in request.messages
    ]
    tools = sorted(
        (
            CacheKeyTool(
                name=tool.name,
                description=tool.description.strip(),
                parameters=tool.parameters,
            )
            for tool in request.tools
        ),
        key=lambda tool: tool.name,
    )
    return CacheKeyRequest(
        system_prompt=request.system_prompt.strip(),
        messages=messages,
        tools=tools,
        temperature=float(request.temperature),
    )


def canonicalize(key_request: CacheKeyRequest) -> str:
    """Deterministic JSON rendering of a key request.

    Raises:
        CacheKeyError: If a field holds a value JSON cannot represent
    """
    try:
        return json.dumps(
            key_request.to_dict(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise CacheKeyError(f"Request cannot be canonicalized: {e}") from e


def generate_key(request: CompletionRequest) -> str:
    """Return the 64-character lowercase SHA-256 hex key of a request.

    Raises:
        CacheKeyError: If the request cannot be canonicalized
    """
    canonical = canonicalize(build_key_request(request))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
