from __future__ import annotations

from typing import Any

from pydantic import Field

from docflow.services.ai.agent.tools import Tool

from .context import DocumentArgs, ToolContext


class DocumentImagesArgs(DocumentArgs):
    max_pages: int | None = Field(default=None, ge=1, le=50)
    dpi: int | None = Field(default=None, ge=72, le=600)


def document_tools(ctx: ToolContext) -> list[Tool]:
    async def get_document_images(args: DocumentImagesArgs) -> dict[str, Any]:
        ctx.require_document(args.document_id)
        content = await ctx.load_document()
        return {
            "documentId": ctx.run.document_id,
            "mimeType": content.mime_type,
            "sizeBytes": len(content.data),
            "maxPages": args.max_pages or ctx.run.max_pages,
            "dpi": args.dpi or ctx.run.dpi,
            "loaded": True,
        }

    async def get_peppol_data(args: DocumentArgs) -> dict[str, Any]:
        ctx.require_document(args.document_id)
        data = await ctx.collaborators.fetch_peppol_data(ctx.run.document_id)
        if not data:
            return {"found": False}
        return {"found": True, "extraction": data}

    return [
        Tool(
            name="get_document_images",
            description="Load the document pages for this run. Call before classify_document or any extract_* tool.",
            args_model=DocumentImagesArgs,
            handler=get_document_images,
        ),
        Tool(
            name="get_peppol_data",
            description="Return structured e-invoice (PEPPOL) data when the document arrived already structured.",
            args_model=DocumentArgs,
            handler=get_peppol_data,
        ),
    ]
