"""OpenAI provider (Chat Completions with function tools)."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import httpx

from .base import BaseProvider, Message, ProviderResult, ToolCall, text_parts

logger = logging.getLogger(__name__)


def _content_part(part: dict[str, Any]) -> dict[str, Any]:
    if part.get("type") == "image":
        data_url = f"data:{part['media_type']};base64,{part['data']}"
        if part["media_type"] == "application/pdf":
            return {"type": "file", "file": {"filename": "document.pdf", "file_data": data_url}}
        return {"type": "image_url", "image_url": {"url": data_url}}
    return {"type": "text", "text": part.get("text", "")}


def _to_openai_messages(messages: list[Message], system_prompt: str) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    if system_prompt:
        converted.append({"role": "system", "content": system_prompt})
    for message in messages:
        role = message["role"]
        if role == "tool":
            converted.append(
                {"role": "tool", "tool_call_id": message["tool_call_id"], "content": message["content"]}
            )
        elif role == "assistant":
            item: dict[str, Any] = {"role": "assistant", "content": message.get("content") or None}
            calls = message.get("tool_calls") or ()
            if calls:
                item["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                    }
                    for call in calls
                ]
            converted.append(item)
        elif isinstance(message["content"], str):
            converted.append({"role": "user", "content": message["content"]})
        else:
            converted.append({"role": "user", "content": [_content_part(p) for p in text_parts(message["content"])]})
    return converted


def _parse_tool_calls(raw_calls: list[dict[str, Any]] | None) -> tuple[ToolCall, ...]:
    calls: list[ToolCall] = []
    for raw in raw_calls or []:
        function = raw.get("function") or {}
        try:
            arguments = json.loads(function.get("arguments") or "{}")
        except json.JSONDecodeError:
            logger.warning("Tool call %s carried malformed arguments", function.get("name"))
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        calls.append(ToolCall(id=raw.get("id", ""), name=function.get("name", ""), arguments=arguments))
    return tuple(calls)


class OpenAIProvider(BaseProvider):
    name = "openai"
    api_url = "https://api.openai.com/v1/chat/completions"
    default_model = "gpt-4o-mini"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

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
        model = model or self.default_model
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": _to_openai_messages(messages, system_prompt),
        }
        if tools:
            payload["tools"] = [{"type": "function", "function": spec} for spec in tools]

        t0 = time.monotonic()
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(
                self.api_url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
            resp.raise_for_status()
            data = resp.json()

        elapsed = (time.monotonic() - t0) * 1000
        choice = data["choices"][0]
        message = choice.get("message") or {}
        usage = data.get("usage", {})

        return ProviderResult(
            raw_text=message.get("content") or "",
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            latency_ms=round(elapsed, 2),
            tool_calls=_parse_tool_calls(message.get("tool_calls")),
            stop_reason=choice.get("finish_reason"),
        )
