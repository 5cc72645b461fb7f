"""Bounded tool-calling agent session."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from docflow.services.ai.common.providers import BaseProvider, Message, ProviderResult

from .tools import ToolRegistry

logger = logging.getLogger(__name__)


class AgentSessionError(RuntimeError):
    pass


class AgentIterationLimitExceeded(AgentSessionError):
    def __init__(self, max_iterations: int) -> None:
        super().__init__(f"Agent did not produce a final answer within {max_iterations} iterations")
        self.max_iterations = max_iterations


@dataclass
class SessionUsage:
    model_calls: int = 0
    tool_calls: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0

    def add(self, result: ProviderResult) -> None:
        self.model_calls += 1
        self.tool_calls += len(result.tool_calls)
        self.prompt_tokens += result.prompt_tokens
        self.completion_tokens += result.completion_tokens
        self.latency_ms += result.latency_ms

    def as_dict(self) -> dict[str, Any]:
        return {
            "modelCalls": self.model_calls,
            "toolCalls": self.tool_calls,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "latencyMs": round(self.latency_ms, 2),
        }


def _tool_result_content(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False, default=str)


class AgentSession:
    """Runs model turns until the model answers without tool calls.

    Each model call is one iteration. Tool calls inside a turn run one after
    another in the order the model listed them.
    """

    def __init__(
        self,
        provider: BaseProvider,
        *,
        system_prompt: str,
        tools: ToolRegistry | None = None,
        model: str = "",
        temperature: float = 0.1,
        max_tokens: int = 4096,
        timeout_seconds: float = 60.0,
        max_iterations: int = 8,
        session_id: str = "agent",
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.provider = provider
        self.system_prompt = system_prompt
        self.tools = tools or ToolRegistry.empty()
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.max_iterations = max_iterations
        self.session_id = session_id
        self.usage = SessionUsage()
        self._messages: list[Message] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self, user_prompt: str | list[dict[str, Any]]) -> str:
        if self._closed:
            raise AgentSessionError(f"Session {self.session_id} is closed")

        self._messages = [{"role": "user", "content": user_prompt}]
        tool_specs = self.tools.specs() if len(self.tools) else None

        for iteration in range(1, self.max_iterations + 1):
            result = await self.provider.chat(
                self._messages,
                system_prompt=self.system_prompt,
                tools=tool_specs,
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout_seconds=self.timeout_seconds,
            )
            self.usage.add(result)

            if not result.tool_calls:
                logger.debug("Session %s finished after %d iteration(s)", self.session_id, iteration)
                return result.raw_text

            self._messages.append(
                {"role": "assistant", "content": result.raw_text, "tool_calls": list(result.tool_calls)}
            )
            for call in result.tool_calls:
                output = await self.tools.invoke(call.name, call.arguments)
                self._messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "name": call.name,
                        "content": _tool_result_content(output),
                    }
                )

        raise AgentIterationLimitExceeded(self.max_iterations)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._messages = []
        logger.debug("Session %s closed (%s)", self.session_id, self.usage.as_dict())

    async def __aenter__(self) -> AgentSession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
