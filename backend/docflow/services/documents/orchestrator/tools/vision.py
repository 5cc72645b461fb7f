"""Vision-model tools: classification and per-type extraction."""

from __future__ import annotations

import base64
import logging
from typing import Any

from docflow.services.ai.agent.tools import Tool, ToolError
from docflow.services.ai.common.json_tools import extract_json_object

from ..contracts import ClassifiedDocumentType
from .context import DocumentArgs, ToolContext

logger = logging.getLogger(__name__)

CLASSIFY_PROMPT = """Classify this financial document. Answer with JSON only:
{"documentType": "INVOICE|BILL|RECEIPT|EXPENSE|CREDIT_NOTE|PRO_FORMA|UNKNOWN", "confidence": 0.0, "reasoning": "short explanation"}
INVOICE: issued by the tenant company. BILL: a supplier invoice received by the tenant company.
RECEIPT: proof of a payment already made (till slip, card receipt). EXPENSE: other costs without a formal invoice."""

_COMMON_FIELDS = """"extractedText": "all readable text",
  "confidence": 0.0,
  "currency": "EUR",
  "subtotal": "amount excluding VAT",
  "vatAmount": "total VAT",
  "totalAmount": "amount including VAT",
  "lines": [{"description": "", "quantity": 1, "unitPrice": "", "vatRate": "", "total": ""}]"""

EXTRACTION_PROMPTS: dict[str, str] = {
    "extract_invoice": """Extract this outgoing invoice. Answer with JSON only:
{"invoiceNumber": "", "issueDate": "YYYY-MM-DD", "dueDate": "YYYY-MM-DD",
  "customerName": "", "customerVatNumber": "", "customerAddress": "",
  "paymentReference": "", "iban": "",
  %s}""",
    "extract_bill": """Extract this supplier bill. Answer with JSON only:
{"billNumber": "", "issueDate": "YYYY-MM-DD", "dueDate": "YYYY-MM-DD",
  "supplierName": "", "supplierVatNumber": "", "supplierAddress": "",
  "paymentReference": "", "iban": "",
  %s}""",
    "extract_receipt": """Extract this receipt. Answer with JSON only:
{"merchantName": "", "merchantVatNumber": "", "merchantAddress": "", "date": "YYYY-MM-DD",
  "paymentMethod": "CARD|CASH|TRANSFER|UNKNOWN",
  %s}""",
    "extract_expense": """Extract this expense document. Answer with JSON only:
{"vendorName": "", "vendorVatNumber": "", "date": "YYYY-MM-DD", "category": "",
  %s}""",
}

EXTRACTION_DOCUMENT_TYPES: dict[str, ClassifiedDocumentType] = {
    "extract_invoice": ClassifiedDocumentType.INVOICE,
    "extract_bill": ClassifiedDocumentType.BILL,
    "extract_receipt": ClassifiedDocumentType.RECEIPT,
    "extract_expense": ClassifiedDocumentType.EXPENSE,
}


async def _ask_vision(ctx: ToolContext, instruction: str) -> dict[str, Any]:
    content = await ctx.load_document()
    vision = ctx.vision
    result = await vision.provider.chat(
        [
            {
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "media_type": content.mime_type,
                        "data": base64.b64encode(content.data).decode("ascii"),
                    },
                    {"type": "text", "text": instruction},
                ],
            }
        ],
        model=vision.model,
        temperature=vision.temperature,
        max_tokens=vision.max_tokens,
        timeout_seconds=vision.timeout_seconds,
    )
    parsed = extract_json_object(result.raw_text)
    if parsed is None:
        raise ToolError("Vision model did not return a JSON object")
    return parsed


def _as_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(1.0, max(0.0, confidence))


def vision_tools(ctx: ToolContext) -> list[Tool]:
    async def classify_document(args: DocumentArgs) -> dict[str, Any]:
        ctx.require_document(args.document_id)
        parsed = await _ask_vision(ctx, CLASSIFY_PROMPT)
        document_type = ClassifiedDocumentType.parse(parsed.get("documentType")) or ClassifiedDocumentType.UNKNOWN
        return {
            "documentType": document_type.value,
            "confidence": _as_confidence(parsed.get("confidence")),
            "reasoning": str(parsed.get("reasoning") or ""),
        }

    def _extractor(tool_name: str):
        instruction = EXTRACTION_PROMPTS[tool_name] % _COMMON_FIELDS

        async def extract(args: DocumentArgs) -> dict[str, Any]:
            ctx.require_document(args.document_id)
            extraction = await _ask_vision(ctx, instruction)
            logger.debug("%s returned %d fields for %s", tool_name, len(extraction), ctx.run.document_id)
            return extraction

        return extract

    tools = [
        Tool(
            name="classify_document",
            description="Classify the loaded document as INVOICE, BILL, RECEIPT, EXPENSE, CREDIT_NOTE, PRO_FORMA or UNKNOWN.",
            args_model=DocumentArgs,
            handler=classify_document,
        )
    ]
    for tool_name, document_type in EXTRACTION_DOCUMENT_TYPES.items():
        tools.append(
            Tool(
                name=tool_name,
                description=f"Extract structured {document_type.value.lower()} data from the loaded document.",
                args_model=DocumentArgs,
                handler=_extractor(tool_name),
            )
        )
    return tools
