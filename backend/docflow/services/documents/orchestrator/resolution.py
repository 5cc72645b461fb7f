"""Turns the agent's raw answer into a usable agent output.

Parsers run in a fixed order and each either resolves the answer or
passes: strict schema decode, lenient field extraction, then one repair
attempt (strict and lenient again on the repaired text). Text carrying
placeholder tokens is never accepted by any parser. Whatever comes out is
completed from the trace when it lacks a document type or extraction,
and the trace alone is used when nothing parsed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from docflow.services.ai.common.json_tools import (
    contains_placeholder_values,
    contains_placeholders,
    extract_json,
    normalize_json,
)

from .contracts import AgentOutput
from .fallback import merge_outputs, reconstruct_from_trace
from .link_policy import ContactLinkPolicy
from .parsing import normalize_extraction, parse_lenient, parse_strict
from .repair import REPAIR_SESSION_ID, OutputRepairAgent
from .trace import ProcessingTraceCollector

logger = logging.getLogger(__name__)


class ResolutionStage(str, Enum):
    STRICT = "strict"
    LENIENT = "lenient"
    REPAIRED_STRICT = "repaired_strict"
    REPAIRED_LENIENT = "repaired_lenient"
    TRACE_FALLBACK = "trace_fallback"
    MERGED = "merged"


@dataclass(frozen=True)
class ParsedOutput:
    output: AgentOutput
    stage: ResolutionStage


@dataclass(frozen=True)
class ResolvedOutput:
    output: AgentOutput
    stage: ResolutionStage
    # Contact id taken from trace evidence rather than from the agent's answer.
    recovered_contact_id: str | None = None


@dataclass
class ResolutionState:
    raw_output: str
    normalized: str
    trace: ProcessingTraceCollector
    placeholders_detected: bool = False


Resolver = Callable[[ResolutionState], Awaitable[ParsedOutput | None]]


def _parse_text(normalized: str, strict_stage: ResolutionStage, lenient_stage: ResolutionStage) -> ParsedOutput | None:
    output = parse_strict(normalized)
    if output is not None:
        return ParsedOutput(_with_normalized_extraction(output), strict_stage)
    output = parse_lenient(normalized)
    if output is not None:
        return ParsedOutput(_with_normalized_extraction(output), lenient_stage)
    return None


def has_placeholders(normalized: str) -> bool:
    """Placeholder tokens in the text itself or in any decoded value, including a stringified extraction."""
    if contains_placeholders(normalized):
        return True
    tree = extract_json(normalized)
    if contains_placeholder_values(tree):
        return True
    if isinstance(tree, dict) and isinstance(tree.get("extraction"), str):
        return contains_placeholder_values(normalize_extraction(tree["extraction"]))
    return False


def _with_normalized_extraction(output: AgentOutput) -> AgentOutput:
    return output.model_copy(update={"extraction": normalize_extraction(output.extraction)})


class OutputResolutionCascade:
    def __init__(self, repair_agent: OutputRepairAgent | None, link_policy: ContactLinkPolicy) -> None:
        self._repair_agent = repair_agent
        self._link_policy = link_policy
        self.resolvers: tuple[Resolver, ...] = (self.resolve_strict, self.resolve_lenient, self.resolve_repaired)

    async def resolve(self, raw_output: str, trace: ProcessingTraceCollector) -> ResolvedOutput | None:
        state = ResolutionState(raw_output=raw_output or "", normalized=normalize_json(raw_output or ""), trace=trace)
        parsed: ParsedOutput | None = None
        for resolver in self.resolvers:
            parsed = await resolver(state)
            if parsed is not None:
                break
        return self.complete(parsed, trace)

    def _gate(self, state: ResolutionState) -> bool:
        if has_placeholders(state.normalized):
            state.placeholders_detected = True
            return False
        return True

    async def resolve_strict(self, state: ResolutionState) -> ParsedOutput | None:
        if not self._gate(state):
            return None
        output = parse_strict(state.normalized)
        return ParsedOutput(_with_normalized_extraction(output), ResolutionStage.STRICT) if output else None

    async def resolve_lenient(self, state: ResolutionState) -> ParsedOutput | None:
        if not self._gate(state):
            return None
        output = parse_lenient(state.normalized)
        return ParsedOutput(_with_normalized_extraction(output), ResolutionStage.LENIENT) if output else None

    async def resolve_repaired(self, state: ResolutionState) -> ParsedOutput | None:
        notes = "attempting_repair"
        if state.placeholders_detected:
            notes += ", placeholders_detected"
        state.trace.record("orchestrator_output_invalid", notes=notes)
        logger.warning("Orchestrator output unusable (%s); attempting repair", notes)
        if self._repair_agent is None:
            return None

        t0 = time.monotonic()
        repaired = await self._repair_agent.repair(state.raw_output)
        elapsed_ms = (time.monotonic() - t0) * 1000

        outcome: ParsedOutput | None = None
        if repaired is None:
            result_note = "no_output"
        else:
            normalized = normalize_json(repaired)
            if has_placeholders(normalized):
                result_note = "placeholders_in_repair"
            else:
                outcome = _parse_text(normalized, ResolutionStage.REPAIRED_STRICT, ResolutionStage.REPAIRED_LENIENT)
                result_note = outcome.stage.value if outcome else "unparseable"
        state.trace.record(
            "orchestrator_output_repair",
            tool=REPAIR_SESSION_ID,
            duration_ms=elapsed_ms,
            notes=result_note,
        )
        return outcome

    def complete(self, parsed: ParsedOutput | None, trace: ProcessingTraceCollector) -> ResolvedOutput | None:
        if parsed is not None and parsed.output.is_complete:
            return ResolvedOutput(parsed.output, parsed.stage)

        fallback = reconstruct_from_trace(trace.snapshot(), self._link_policy)
        if parsed is None:
            if fallback is None:
                return None
            trace.record(
                "orchestrator_output_parse_failed",
                notes=f"using_extraction_trace_fallback, sourceTool={fallback.source_tool}",
            )
            logger.warning("Using trace fallback from %s", fallback.source_tool)
            return ResolvedOutput(fallback.output, ResolutionStage.TRACE_FALLBACK, fallback.contact_id)

        if fallback is None:
            return ResolvedOutput(parsed.output, parsed.stage)

        output = parsed.output
        trace.record(
            "orchestrator_output_incomplete",
            notes=(
                f"missingDocumentType={not output.has_document_type}, "
                f"missingExtraction={output.extraction is None}, sourceTool={fallback.source_tool}"
            ),
        )
        merged = merge_outputs(output, fallback.output)
        recovered = fallback.contact_id if output.contact_id is None else None
        return ResolvedOutput(merged, ResolutionStage.MERGED, recovered)
