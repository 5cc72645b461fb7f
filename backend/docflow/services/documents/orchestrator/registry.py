"""Assembles the per-run capability registry handed to the orchestrator agent."""

from __future__ import annotations

from docflow.services.ai.agent.tools import ToolRegistry, TraceSink

from .tools.contacts import contact_tools
from .tools.context import ToolContext
from .tools.documents import document_tools
from .tools.storage import storage_tools
from .tools.validation import validation_tools
from .tools.vision import vision_tools


def build_tool_registry(ctx: ToolContext, trace: TraceSink) -> ToolRegistry:
    registry = ToolRegistry(trace=trace)
    for tool in (
        *document_tools(ctx),
        *vision_tools(ctx),
        *validation_tools(),
        *contact_tools(ctx),
        *storage_tools(ctx),
    ):
        registry.register(tool)
    return registry
