from __future__ import annotations

from typing import Any

from pydantic import Field

from docflow.services.ai.agent.tools import Tool, ToolError

from .context import ToolArgs, ToolContext
from .validation import normalize_vat


class ContactLookupArgs(ToolArgs):
    vat_number: str


class CreateContactArgs(ToolArgs):
    name: str = Field(min_length=1)
    vat_number: str | None = None
    address: str | None = None


def contact_tools(ctx: ToolContext) -> list[Tool]:
    tenant_id = ctx.run.tenant_id

    async def lookup_contact(args: ContactLookupArgs) -> dict[str, Any]:
        vat_number = normalize_vat(args.vat_number)
        if vat_number is None:
            raise ToolError("vatNumber is empty")
        contact = await ctx.collaborators.lookup_contact(tenant_id, vat_number)
        if contact is None:
            return {"found": False, "vatNumber": vat_number}
        exact = normalize_vat(contact.vat_number) == vat_number
        return {
            "found": True,
            "contactId": contact.contact_id,
            "name": contact.name,
            "vatNumber": contact.vat_number,
            "address": contact.address,
            "matchType": "EXACT" if exact else "PARTIAL",
        }

    async def create_contact(args: CreateContactArgs) -> dict[str, Any]:
        result = await ctx.collaborators.create_contact(
            tenant_id,
            args.name.strip(),
            normalize_vat(args.vat_number),
            args.address,
        )
        return result.model_dump(by_alias=True)

    async def lookup_company(args: ContactLookupArgs) -> dict[str, Any]:
        vat_number = normalize_vat(args.vat_number)
        if vat_number is None:
            raise ToolError("vatNumber is empty")
        company = await ctx.collaborators.lookup_company(vat_number)
        if not company:
            return {"found": False, "vatNumber": vat_number}
        return {"found": True, "vatNumber": vat_number, "company": company}

    return [
        Tool(
            name="lookup_contact",
            description="Find an existing contact of this tenant by VAT number. matchType EXACT means the VAT numbers are identical.",
            args_model=ContactLookupArgs,
            handler=lookup_contact,
        ),
        Tool(
            name="create_contact",
            description="Create a contact for the counterparty when lookup_contact found none.",
            args_model=CreateContactArgs,
            handler=create_contact,
        ),
        Tool(
            name="lookup_company",
            description="Look up a legal entity in the company register (CBE) by VAT number.",
            args_model=ContactLookupArgs,
            handler=lookup_company,
        ),
    ]
