"""Single-shot, tool-free agent that rewrites broken output into the agent output schema."""

from __future__ import annotations

import logging

from docflow.services.ai.agent.session import AgentSession
from docflow.services.ai.agent.tools import ToolRegistry
from docflow.services.ai.common.router import ResolvedConfig

from .prompts import REPAIR_SYSTEM_PROMPT, build_repair_prompt

logger = logging.getLogger(__name__)

REPAIR_SESSION_ID = "orchestrator-output-repair"
DEFAULT_REPAIR_MAX_CHARS = 12000


class OutputRepairAgent:
    def __init__(self, config: ResolvedConfig, *, max_chars: int = DEFAULT_REPAIR_MAX_CHARS) -> None:
        self._config = config
        self._max_chars = max_chars

    async def repair(self, raw_output: str) -> str | None:
        """Repaired text, or None when the repair call fails or answers with nothing."""
        session = AgentSession(
            self._config.provider,
            system_prompt=REPAIR_SYSTEM_PROMPT,
            tools=ToolRegistry.empty(),
            model=self._config.model,
            temperature=0.0,
            max_tokens=self._config.max_tokens,
            timeout_seconds=self._config.timeout_seconds,
            max_iterations=1,
            session_id=REPAIR_SESSION_ID,
        )
        try:
            repaired = await session.run(build_repair_prompt(raw_output, self._max_chars))
        except Exception:
            logger.exception("Orchestrator output repair failed")
            return None
        finally:
            await session.close()
        return repaired if repaired and repaired.strip() else None
