import json
import os
import unittest
import uuid
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from docflow.api.v1.documents import get_document_downloader, get_orchestrator_config
from docflow.core.auth import CurrentUser, get_current_user
from docflow.core.config import get_settings
from docflow.core.dependencies import get_db
from docflow.main import app
from docflow.models.document import Base, Document, DocumentIngestionRun, Tenant
from docflow.services.ai.common.providers import MockProvider
from docflow.services.ai.common.router import ResolvedConfig
from docflow.services.documents.orchestrator.service import OrchestratorConfig

FINAL_ANSWER = json.dumps(
    {
        "status": "success",
        "documentType": "RECEIPT",
        "extraction": {"merchantName": "Tankstation", "totalAmount": "64.20"},
        "description": "Fuel receipt",
        "keywords": ["fuel"],
        "confidence": 0.83,
    }
)


def _resolved(provider):
    return ResolvedConfig(provider=provider, model="", temperature=0.0, max_tokens=1024, timeout_seconds=5)


class DocumentProcessingApiTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

        db = self.SessionLocal()
        tenant = Tenant(name="Boekhouding BV", vat_number="BE0987654321")
        other = Tenant(name="Other BV")
        db.add_all([tenant, other])
        db.flush()
        document = Document(tenant_id=tenant.id, filename="receipt.jpg", content_type="image/jpeg", storage_key="k1")
        foreign = Document(tenant_id=other.id, filename="foreign.pdf", storage_key="k2")
        db.add_all([document, foreign])
        db.commit()
        self.tenant_id = str(tenant.id)
        self.document_id = str(document.id)
        self.foreign_document_id = str(foreign.id)
        db.close()

        self.agent_script = [FINAL_ANSWER]

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        self.current_user = CurrentUser(id=str(uuid.uuid4()), role="ACCOUNTANT", tenant_id=self.tenant_id)

        def override_get_current_user():
            return self.current_user

        def override_config():
            return OrchestratorConfig(
                orchestrator=_resolved(MockProvider(self.agent_script)),
                vision=_resolved(MockProvider()),
                repair=_resolved(MockProvider()),
            )

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = override_get_current_user
        app.dependency_overrides[get_orchestrator_config] = override_config
        app.dependency_overrides[get_document_downloader] = lambda: (lambda key: b"\xff\xd8\xff")
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _process(self, document_id=None, **body):
        return self.client.post(f"/api/v1/documents/{document_id or self.document_id}/process", json=body or None)

    def test_health(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_process_document_returns_run_detail(self):
        resp = self._process(maxPages=2, dpi=200)

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "SUCCEEDED")
        self.assertEqual(body["resultKind"], "success")
        self.assertEqual(body["documentType"], "RECEIPT")
        self.assertEqual(body["confidence"], 0.83)
        self.assertTrue(body["extractionStored"])
        self.assertEqual(body["intelligenceMode"], "autonomous")
        actions = [step["action"] for step in body["trace"]]
        self.assertIn("fallback_store_extraction", actions)

        db = self.SessionLocal()
        run = db.get(DocumentIngestionRun, uuid.UUID(body["id"]))
        self.assertEqual((run.max_pages, run.dpi), (2, 200))
        self.assertEqual(str(run.requested_by), self.current_user.id)
        db.close()

    def test_failed_processing_is_reported_not_raised(self):
        self.agent_script = [RuntimeError("model unavailable")]

        resp = self._process()

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "FAILED")
        self.assertEqual(body["failureStage"], "orchestrator")
        self.assertEqual(body["failureReason"], "model unavailable")

    def test_crashed_processing_closes_the_run(self):
        async def crash(db, run, **kwargs):
            raise RuntimeError("session unusable")

        with patch("docflow.api.v1.documents.process_ingestion_run", crash):
            resp = self._process()

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "FAILED")
        self.assertEqual(body["failureStage"], "processing")
        self.assertEqual(body["failureReason"], "RuntimeError: session unusable")
        self.assertEqual(self._process().status_code, 200)

    def test_active_run_conflicts(self):
        db = self.SessionLocal()
        db.add(DocumentIngestionRun(document_id=uuid.UUID(self.document_id), tenant_id=uuid.UUID(self.tenant_id)))
        db.commit()
        db.close()

        resp = self._process()

        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["detail"], "Document is already being processed")

    def test_unknown_and_foreign_documents_are_not_found(self):
        for document_id in (str(uuid.uuid4()), self.foreign_document_id, "not-a-uuid"):
            resp = self._process(document_id)
            self.assertEqual(resp.status_code, 404)
            self.assertEqual(resp.json()["detail"], "Document not found")

    def test_invalid_page_limit_rejected(self):
        resp = self._process(maxPages=0)
        self.assertEqual(resp.status_code, 422)

    def test_viewer_cannot_process(self):
        self.current_user = CurrentUser(id=str(uuid.uuid4()), role="VIEWER", tenant_id=self.tenant_id)
        resp = self._process()
        self.assertEqual(resp.status_code, 403)

    def test_user_without_tenant_is_rejected(self):
        self.current_user = CurrentUser(id=str(uuid.uuid4()), role="ADMIN")
        resp = self._process()
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["detail"], "Missing tenant")

    def test_list_and_get_runs(self):
        first = self._process().json()
        second = self._process().json()

        resp = self.client.get(f"/api/v1/documents/{self.document_id}/runs")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["total"], 2)
        self.assertEqual({item["id"] for item in body["items"]}, {first["id"], second["id"]})
        self.assertNotIn("trace", body["items"][0])

        detail = self.client.get(f"/api/v1/runs/{first['id']}")
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()["id"], first["id"])
        self.assertTrue(detail.json()["trace"])

    def test_run_of_other_tenant_is_hidden(self):
        run_id = self._process().json()["id"]
        self.current_user = CurrentUser(id=str(uuid.uuid4()), role="ADMIN", tenant_id=str(uuid.uuid4()))

        self.assertEqual(self.client.get(f"/api/v1/runs/{run_id}").status_code, 404)
        self.assertEqual(self.client.get("/api/v1/runs/garbage").status_code, 404)

    def test_processing_disabled_hides_endpoints(self):
        with patch.dict(os.environ, {"ENABLE_DOCUMENT_PROCESSING": "false"}):
            get_settings.cache_clear()
            resp = self._process()
            runs = self.client.get(f"/api/v1/documents/{self.document_id}/runs")
        get_settings.cache_clear()

        self.assertEqual(resp.status_code, 404)
        self.assertEqual(runs.status_code, 404)
