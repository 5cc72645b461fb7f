"""Per-run state shared by the orchestrator's tools."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel

from docflow.services.ai.agent.tools import ToolError
from docflow.services.ai.common.router import ResolvedConfig

from ..collaborators import ExtractionStore, OrchestratorCollaborators
from ..contracts import CamelModel, DocumentContent, OrchestrationRun

logger = logging.getLogger(__name__)


class ToolArgs(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DocumentArgs(ToolArgs):
    document_id: str


@dataclass
class ToolContext:
    run: OrchestrationRun
    collaborators: OrchestratorCollaborators
    store_extraction: ExtractionStore
    vision: ResolvedConfig
    issues: list[str] = field(default_factory=list)
    _documents: dict[str, DocumentContent] = field(default_factory=dict)

    def require_document(self, document_id: str) -> None:
        if document_id.strip() != self.run.document_id:
            raise ToolError(f"Document {document_id} is outside this run; use {self.run.document_id}")

    def add_issue(self, issue: str) -> None:
        if issue not in self.issues:
            self.issues.append(issue)

    async def load_document(self) -> DocumentContent:
        cached = self._documents.get(self.run.document_id)
        if cached is not None:
            return cached
        content = await self.collaborators.fetch_document(self.run.document_id, self.run.tenant_id)
        if not content.data:
            raise ToolError("Document has no content")
        self._documents[self.run.document_id] = content
        return content
