"""Abstract base for all AI providers."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any

# Provider-neutral message shapes:
#   {"role": "user", "content": str | list[part]}
#       part = {"type": "text", "text": ...} | {"type": "image", "media_type": ..., "data": <base64>}
#   {"role": "assistant", "content": str, "tool_calls": [ToolCall, ...]}
#   {"role": "tool", "tool_call_id": ..., "name": ..., "content": str}
Message = dict[str, Any]


@dataclass(frozen=True)
class ToolCall:
    """One tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderResult:
    """Immutable result returned by every provider."""

    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0
    tool_calls: tuple[ToolCall, ...] = ()
    stop_reason: str | None = None


class BaseProvider(abc.ABC):
    """Contract that every AI provider must implement."""

    name: str = "base"

    @abc.abstractmethod
    async def chat(
        self,
        messages: list[Message],
        *,
        system_prompt: str = "",
        tools: list[dict[str, Any]] | None = None,
        model: str = "",
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout_seconds: float = 30.0,
    ) -> ProviderResult:
        """Send a conversation (plus optional tool specs) and return the next model turn."""


def text_parts(content: str | list[dict[str, Any]]) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    return list(content)
