"""Mock provider: deterministic or scripted responses for tests and fallback."""

from __future__ import annotations

import copy
import time
from collections import deque
from collections.abc import Iterable
from typing import Any, Union

from .base import BaseProvider, Message, ProviderResult, ToolCall

DEFAULT_RESPONSE = (
    '{"status": "needs_review", "reason": "AI provider not configured", '
    '"issues": ["Mock provider returned a placeholder response"]}'
)

ScriptItem = Union[str, ToolCall, list, tuple, ProviderResult, BaseException]


class MockProvider(BaseProvider):
    """Replays a script of turns; falls back to a fixed needs-review answer when empty.

    Script items: ``str`` (final text), ``ToolCall`` or a sequence of them
    (tool-calling turn), ``ProviderResult`` (returned as-is) or an exception
    instance (raised).
    """

    name = "mock"

    def __init__(self, script: Iterable[ScriptItem] | None = None) -> None:
        self._script: deque[ScriptItem] = deque(script or ())
        self.calls: list[dict[str, Any]] = []

    @property
    def remaining(self) -> int:
        return len(self._script)

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
        t0 = time.monotonic()
        self.calls.append(
            {
                "messages": copy.deepcopy(messages),
                "system_prompt": system_prompt,
                "tools": [t["name"] for t in tools or ()],
                "model": model,
            }
        )
        item: ScriptItem = self._script.popleft() if self._script else DEFAULT_RESPONSE
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, ProviderResult):
            return item

        calls: tuple[ToolCall, ...] = ()
        text = ""
        if isinstance(item, ToolCall):
            calls = (item,)
        elif isinstance(item, (list, tuple)):
            calls = tuple(item)
        else:
            text = item

        elapsed = (time.monotonic() - t0) * 1000
        prompt_words = sum(len(str(m.get("content", "")).split()) for m in messages)
        return ProviderResult(
            raw_text=text,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=prompt_words,
            completion_tokens=len(text.split()),
            latency_ms=round(elapsed, 2),
            tool_calls=calls,
            stop_reason="tool_use" if calls else "end_turn",
        )
