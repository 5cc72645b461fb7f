"""Document orchestrator: agent run, output resolution, persistence guard, classification."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from docflow.core.config import Settings
from docflow.services.ai.agent.session import AgentSession
from docflow.services.ai.common.router import ResolvedConfig, resolve

from .classifier import ORCHESTRATOR_STAGE, classify, derive_validation_passed
from .collaborators import OrchestratorCollaborators
from .contracts import (
    AgentOutput,
    ContactLinkPolicyName,
    Failed,
    IntelligenceMode,
    OrchestrationRun,
    OrchestratorResult,
    TenantContext,
)
from .driver import DRIVER_TOOL, AgentDriver, SessionFactory
from .link_policy import get_link_policy
from .persistence import PersistenceGuard, TrackedExtractionStore, is_storable
from .prompts import build_system_prompt, build_task_prompt
from .registry import build_tool_registry
from .repair import DEFAULT_REPAIR_MAX_CHARS, OutputRepairAgent
from .resolution import OutputResolutionCascade
from .tools.context import ToolContext
from .trace import ProcessingTraceCollector

logger = logging.getLogger(__name__)

PARSE_FAILED_REASON = "Failed to parse orchestrator output"
NOT_PERSISTED_REASON = "Extraction completed but could not be persisted"
STORE_STAGE = "store_extraction"


@dataclass(frozen=True)
class OrchestratorConfig:
    orchestrator: ResolvedConfig
    vision: ResolvedConfig
    repair: ResolvedConfig
    mode: IntelligenceMode = IntelligenceMode.AUTONOMOUS
    link_policy: ContactLinkPolicyName = ContactLinkPolicyName.VAT_ONLY
    repair_max_chars: int = DEFAULT_REPAIR_MAX_CHARS

    @classmethod
    def from_settings(cls, settings: Settings) -> OrchestratorConfig:
        return cls(
            orchestrator=resolve("orchestrator", settings=settings),
            vision=resolve("vision", settings=settings),
            repair=resolve("repair", settings=settings),
            mode=IntelligenceMode(settings.intelligence_mode),
            link_policy=ContactLinkPolicyName(settings.contact_link_policy),
            repair_max_chars=settings.orchestrator_repair_max_chars,
        )


def _with_tool_issues(output: AgentOutput, tool_issues: list[str]) -> AgentOutput:
    if not tool_issues:
        return output
    # Decide validation before non-critical tool issues are mixed in.
    issues = list(dict.fromkeys([*(output.issues or []), *tool_issues]))
    return output.model_copy(
        update={"issues": issues, "validation_passed": derive_validation_passed(output)}
    )


class DocumentOrchestrator:
    """Processes one document per ``process`` call and always returns a result.

    Instances hold configuration only; every call builds its own trace,
    tool registry and storage tracker.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        collaborators: OrchestratorCollaborators,
        *,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self._config = config
        self._collaborators = collaborators
        self._link_policy = get_link_policy(config.link_policy)
        self._driver = AgentDriver(config.orchestrator, session_factory or AgentSession)
        self._cascade = OutputResolutionCascade(
            OutputRepairAgent(config.repair, max_chars=config.repair_max_chars),
            self._link_policy,
        )

    async def process(
        self,
        document_id: str,
        tenant_id: str,
        tenant_context: TenantContext | None = None,
        run_id: str | None = None,
        max_pages: int | None = None,
        dpi: int | None = None,
    ) -> OrchestratorResult:
        run = OrchestrationRun(
            document_id=str(document_id),
            tenant_id=str(tenant_id),
            tenant_context=tenant_context or TenantContext(),
            mode=self._config.mode,
            run_id=str(run_id) if run_id else None,
            max_pages=max_pages,
            dpi=dpi,
        )
        trace = ProcessingTraceCollector()
        started = time.monotonic()
        logger.info(
            "Processing document %s (run=%s, mode=%s, maxIterations=%d)",
            run.document_id,
            run.run_id,
            run.mode.value,
            run.max_iterations,
        )
        try:
            result = await self._process(run, trace)
        except Exception as exc:
            logger.exception("Orchestrator crashed for document %s", run.document_id)
            trace.record(
                "orchestrator_unexpected_error",
                tool=DRIVER_TOOL,
                notes=f"{exc.__class__.__name__}: {exc}",
            )
            result = Failed(
                reason=str(exc) or "Unexpected orchestrator error",
                stage=ORCHESTRATOR_STAGE,
                trace=trace.snapshot(),
            )
        logger.info(
            "Document %s finished as %s in %.0f ms (%d trace steps)",
            run.document_id,
            result.kind,
            (time.monotonic() - started) * 1000,
            len(result.trace),
        )
        return result

    async def _process(self, run: OrchestrationRun, trace: ProcessingTraceCollector) -> OrchestratorResult:
        store = TrackedExtractionStore(self._collaborators.store_extraction)
        ctx = ToolContext(
            run=run,
            collaborators=self._collaborators,
            store_extraction=store,
            vision=self._config.vision,
        )
        outcome = await self._driver.run(
            run,
            registry=build_tool_registry(ctx, trace),
            system_prompt=build_system_prompt(run.tenant_context, self._link_policy),
            task_prompt=build_task_prompt(run),
            trace=trace,
        )
        if outcome.failed:
            return Failed(
                reason=outcome.error or "Orchestrator execution failed",
                stage=ORCHESTRATOR_STAGE,
                trace=trace.snapshot(),
            )

        resolved = await self._cascade.resolve(outcome.raw_output or "", trace)
        if resolved is None:
            return Failed(reason=PARSE_FAILED_REASON, stage=ORCHESTRATOR_STAGE, trace=trace.snapshot())

        persisted = await PersistenceGuard(store, trace).ensure_persisted(run, resolved)
        output = resolved.output
        if not persisted and is_storable(output):
            return Failed(reason=NOT_PERSISTED_REASON, stage=STORE_STAGE, trace=trace.snapshot())

        return classify(_with_tool_issues(output, ctx.issues), trace.snapshot())
