"""Anthropic / Claude provider (Messages API with tool use)."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from .base import BaseProvider, Message, ProviderResult, ToolCall, text_parts

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"


def _content_block(part: dict[str, Any]) -> dict[str, Any]:
    if part.get("type") == "image":
        source = {"type": "base64", "media_type": part["media_type"], "data": part["data"]}
        if part["media_type"] == "application/pdf":
            return {"type": "document", "source": source}
        return {"type": "image", "source": source}
    return {"type": "text", "text": part.get("text", "")}


def _to_anthropic_messages(messages: list[Message]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for message in messages:
        role = message["role"]
        if role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": message["tool_call_id"],
                "content": message["content"],
            }
            # Consecutive tool results travel together in a single user turn.
            previous = converted[-1] if converted else None
            if previous and previous["role"] == "user" and previous.get("_tool_results"):
                previous["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block], "_tool_results": True})
            continue

        if role == "assistant":
            blocks: list[dict[str, Any]] = []
            if message.get("content"):
                blocks.append({"type": "text", "text": message["content"]})
            for call in message.get("tool_calls") or ():
                blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
            converted.append({"role": "assistant", "content": blocks})
            continue

        converted.append({"role": "user", "content": [_content_block(p) for p in text_parts(message["content"])]})

    for item in converted:
        item.pop("_tool_results", None)
    return converted


class ClaudeProvider(BaseProvider):
    name = "claude"

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
        model = model or "claude-sonnet-4-20250514"
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": _to_anthropic_messages(messages),
        }
        if system_prompt:
            payload["system"] = system_prompt
        if tools:
            payload["tools"] = [
                {"name": t["name"], "description": t["description"], "input_schema": t["parameters"]} for t in tools
            ]

        t0 = time.monotonic()
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(
                API_URL,
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json=payload,
            )
            resp.raise_for_status()
            data = resp.json()

        elapsed = (time.monotonic() - t0) * 1000
        texts: list[str] = []
        calls: list[ToolCall] = []
        for block in data.get("content", []):
            if block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                calls.append(ToolCall(id=block["id"], name=block["name"], arguments=block.get("input") or {}))
        usage = data.get("usage", {})

        return ProviderResult(
            raw_text="".join(texts),
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            latency_ms=round(elapsed, 2),
            tool_calls=tuple(calls),
            stop_reason=data.get("stop_reason"),
        )
