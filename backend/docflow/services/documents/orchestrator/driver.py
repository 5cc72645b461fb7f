"""Runs the orchestrator agent for one document with a bounded iteration budget."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from docflow.services.ai.agent.session import AgentSession
from docflow.services.ai.agent.tools import ToolRegistry
from docflow.services.ai.common.router import ResolvedConfig

from .contracts import OrchestrationRun
from .trace import ProcessingTraceCollector

logger = logging.getLogger(__name__)

DRIVER_TOOL = "document-orchestrator"

SessionFactory = Callable[..., AgentSession]


@dataclass(frozen=True)
class AgentRunOutcome:
    raw_output: str | None
    duration_ms: int
    error: str | None = None
    usage: dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.error is not None


class AgentDriver:
    def __init__(self, config: ResolvedConfig, session_factory: SessionFactory = AgentSession) -> None:
        self._config = config
        self._session_factory = session_factory

    async def run(
        self,
        run: OrchestrationRun,
        *,
        registry: ToolRegistry,
        system_prompt: str,
        task_prompt: str,
        trace: ProcessingTraceCollector,
    ) -> AgentRunOutcome:
        """Never raises: session failures come back as an outcome with ``error`` set."""
        t0 = time.monotonic()
        session = self._session_factory(
            self._config.provider,
            system_prompt=system_prompt,
            tools=registry,
            model=self._config.model,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
            timeout_seconds=self._config.timeout_seconds,
            max_iterations=run.max_iterations,
            session_id=f"document-orchestrator:{run.run_id or run.document_id}",
        )
        try:
            raw_output = await session.run(task_prompt)
        except Exception as exc:
            message = str(exc) or "Orchestrator execution failed"
            logger.warning("Orchestrator session failed for document %s: %s", run.document_id, message)
            trace.record("orchestrator_run_failed", tool=DRIVER_TOOL, notes=message)
            return AgentRunOutcome(
                raw_output=None,
                duration_ms=int((time.monotonic() - t0) * 1000),
                error=message,
                usage=session.usage.as_dict(),
            )
        finally:
            await session.close()

        duration_ms = int((time.monotonic() - t0) * 1000)
        usage = {
            "provider": self._config.provider.name,
            "model": self._config.model,
            "mode": run.mode.value,
            "maxIterations": run.max_iterations,
            **session.usage.as_dict(),
        }
        trace.record(
            "orchestrator_run_completed",
            tool=DRIVER_TOOL,
            duration_ms=duration_ms,
            output=usage,
            notes=f"outputChars={len(raw_output or '')}",
        )
        return AgentRunOutcome(raw_output=raw_output, duration_ms=duration_ms, usage=usage)
