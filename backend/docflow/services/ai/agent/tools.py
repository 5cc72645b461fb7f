"""Tool definitions and the per-session registry handed to a tool-calling agent."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Any], Awaitable[Any]]


class TraceSink(Protocol):
    def record(
        self,
        action: str,
        tool: str | None = None,
        duration_ms: int | float = 0,
        input: Any = None,
        output: Any = None,
        notes: str | None = None,
    ) -> Any: ...


class ToolError(Exception):
    """Raised by a handler to report a failure the agent should see and may recover from."""


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    args_model: type[BaseModel]
    handler: ToolHandler

    def spec(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.args_model.model_json_schema(by_alias=True),
        }


def _validation_message(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
        problems.append(f"{location}: {error.get('msg')}")
    return "Invalid arguments: " + "; ".join(problems)


class ToolRegistry:
    """Named tools with argument validation and one trace step per invocation.

    Handler failures never propagate: they come back as ``{"error": ...}``
    so the agent can react, and the trace step carries the error as notes
    with a null output.
    """

    def __init__(self, tools: Iterable[Tool] = (), *, trace: TraceSink | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        self._trace = trace
        for tool in tools:
            self.register(tool)

    @classmethod
    def empty(cls) -> ToolRegistry:
        return cls()

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def names(self) -> list[str]:
        return list(self._tools)

    def specs(self) -> list[dict[str, Any]]:
        return [tool.spec() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def invoke(self, name: str, arguments: dict[str, Any] | None) -> Any:
        arguments = dict(arguments or {})
        tool = self._tools.get(name)
        t0 = time.monotonic()
        output: Any = None
        error: str | None = None

        if tool is None:
            error = f"Unknown tool: {name}"
        else:
            try:
                parsed = tool.args_model.model_validate(arguments)
                output = await tool.handler(parsed)
            except ValidationError as exc:
                error = _validation_message(exc)
            except ToolError as exc:
                error = str(exc) or exc.__class__.__name__
            except Exception as exc:
                logger.warning("Tool %s failed", name, exc_info=True)
                error = f"{exc.__class__.__name__}: {exc}"

        elapsed_ms = (time.monotonic() - t0) * 1000
        if self._trace is not None:
            self._trace.record(
                action=name,
                tool=name,
                duration_ms=elapsed_ms,
                input=arguments,
                output=output,
                notes=error,
            )
        if error is not None:
            return {"error": error}
        return output
