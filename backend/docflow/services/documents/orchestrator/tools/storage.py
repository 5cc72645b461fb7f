"""Persistence tools: the critical store_extraction plus best-effort indexing."""

from __future__ import annotations

import json
import logging
from typing import Any, Literal

from pydantic import Field

from docflow.services.ai.agent.tools import Tool, ToolError
from docflow.services.ai.common.json_tools import contains_placeholders

from ..contracts import ContactEvidence, LinkDecision, LinkDecisionType, StoreExtractionPayload, parse_contact_id
from .context import ToolArgs, ToolContext

logger = logging.getLogger(__name__)


class StoreExtractionArgs(ToolArgs):
    document_type: str = Field(min_length=1)
    extraction: dict[str, Any]
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    raw_text: str = ""
    contact_id: str | None = None
    contact_created: bool = False
    link_decision_type: LinkDecisionType | None = None
    link_decision_contact_id: str | None = None
    link_decision_reason: str | None = None
    link_decision_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    link_decision_evidence: ContactEvidence | None = None


class ChunkArgs(ToolArgs):
    text: str


class ExampleArgs(ToolArgs):
    document_type: str
    vendor_vat_number: str | None = None
    extraction: dict[str, Any]


class IndexingStatusArgs(ToolArgs):
    status: Literal["PROCESSING", "INDEXED", "FAILED"]


def _link_decision(args: StoreExtractionArgs) -> LinkDecision | None:
    if args.link_decision_type is None:
        return None
    contact_id = parse_contact_id(args.link_decision_contact_id or args.contact_id)
    if args.link_decision_type != LinkDecisionType.NONE and contact_id is None:
        raise ToolError(f"{args.link_decision_type.value} requires a valid contact id")
    return LinkDecision(
        decision_type=args.link_decision_type,
        contact_id=contact_id if args.link_decision_type != LinkDecisionType.NONE else None,
        reason=args.link_decision_reason or "",
        confidence=args.link_decision_confidence if args.link_decision_type == LinkDecisionType.SUGGEST else None,
        evidence=args.link_decision_evidence,
    )


def storage_tools(ctx: ToolContext) -> list[Tool]:
    run = ctx.run

    async def store_extraction(args: StoreExtractionArgs) -> dict[str, Any]:
        if contains_placeholders(json.dumps(args.extraction, ensure_ascii=False)):
            raise ToolError('Extraction contains placeholder tokens ("..." or "…"); send complete values')
        decision = _link_decision(args)
        contact_id = parse_contact_id(args.contact_id)
        payload = StoreExtractionPayload(
            document_id=run.document_id,
            tenant_id=run.tenant_id,
            run_id=run.run_id,
            document_type=args.document_type.strip().upper(),
            extraction=args.extraction,
            description=args.description,
            keywords=args.keywords,
            confidence=args.confidence,
            raw_text=args.raw_text,
            contact_id=contact_id,
            contact_created=args.contact_created,
            link_decision=decision,
        )
        success = await ctx.store_extraction(payload)

        result: dict[str, Any] = {"success": success, "documentType": payload.document_type}
        if not success:
            return result
        if decision is not None and decision.decision_type == LinkDecisionType.AUTO_LINK:
            result["linkedContactId"] = decision.contact_id
        elif decision is not None and decision.decision_type == LinkDecisionType.SUGGEST:
            result["suggestedContactId"] = decision.contact_id
        if args.contact_created and contact_id:
            result["contactId"] = contact_id
        return result

    async def store_chunks(args: ChunkArgs) -> dict[str, Any]:
        try:
            count = await ctx.collaborators.store_chunks(run.document_id, run.tenant_id, args.text)
        except Exception as exc:
            logger.warning("Chunk storage failed for %s: %s", run.document_id, exc)
            issue = f"Chunk storage failed: {exc}"
            ctx.add_issue(issue)
            return {"success": False, "issue": issue}
        return {"success": True, "chunks": count}

    async def index_example(args: ExampleArgs) -> dict[str, Any]:
        try:
            await ctx.collaborators.index_example(
                run.tenant_id,
                run.document_id,
                args.document_type.strip().upper(),
                args.vendor_vat_number,
                args.extraction,
            )
        except Exception as exc:
            logger.warning("Example indexing failed for %s: %s", run.document_id, exc)
            issue = f"Example indexing failed: {exc}"
            ctx.add_issue(issue)
            return {"success": False, "issue": issue}
        return {"success": True}

    async def update_indexing_status(args: IndexingStatusArgs) -> dict[str, Any]:
        try:
            await ctx.collaborators.update_indexing_status(run.document_id, run.tenant_id, args.status)
        except Exception as exc:
            logger.warning("Indexing status update failed for %s: %s", run.document_id, exc)
            issue = f"Indexing status update failed: {exc}"
            ctx.add_issue(issue)
            return {"success": False, "issue": issue}
        return {"success": True, "status": args.status}

    return [
        Tool(
            name="store_extraction",
            description=(
                "Persist the final extraction with document type, description, keywords, confidence, raw text, "
                "contact and link decision (AUTO_LINK, SUGGEST or NONE). Call exactly once."
            ),
            args_model=StoreExtractionArgs,
            handler=store_extraction,
        ),
        Tool(
            name="store_chunks",
            description="Store the document text for search. Failure is not fatal.",
            args_model=ChunkArgs,
            handler=store_chunks,
        ),
        Tool(
            name="index_example",
            description="Keep this extraction as a reference example for the vendor. Failure is not fatal.",
            args_model=ExampleArgs,
            handler=index_example,
        ),
        Tool(
            name="update_indexing_status",
            description="Set the document's indexing status. Failure is not fatal.",
            args_model=IndexingStatusArgs,
            handler=update_indexing_status,
        ),
    ]
