import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = uuid.UUID(value)
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")

RUN_STATUSES = ("QUEUED", "PROCESSING", "SUCCEEDED", "NEEDS_REVIEW", "FAILED")
ACTIVE_RUN_STATUSES = ("QUEUED", "PROCESSING")
INDEXING_STATUSES = ("PENDING", "PROCESSING", "INDEXED", "FAILED")


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    vat_number = Column(String(32))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Contact(Base):
    __tablename__ = "contacts"
    __table_args__ = (Index("ix_contacts_tenant_vat", "tenant_id", "vat_number"),)

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID_TYPE, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    vat_number = Column(String(32))
    address = Column(Text)
    iban = Column(String(34))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Document(Base):
    __tablename__ = "documents"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID_TYPE, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    content_type = Column(String(100), nullable=False, default="application/pdf")
    storage_key = Column(String(512), nullable=False)
    peppol_payload = Column(JSON_TYPE)
    indexing_status = Column(String(20), nullable=False, default="PENDING")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class DocumentIngestionRun(Base):
    __tablename__ = "document_ingestion_runs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('QUEUED','PROCESSING','SUCCEEDED','NEEDS_REVIEW','FAILED')",
            name="ck_ingestion_runs_status",
        ),
        Index("ix_ingestion_runs_document_status", "document_id", "status"),
    )

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    document_id = Column(UUID_TYPE, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(UUID_TYPE, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default="QUEUED")
    result_kind = Column(String(20))
    failure_stage = Column(String(64))
    failure_reason = Column(Text)
    intelligence_mode = Column(String(20))
    max_pages = Column(Integer)
    dpi = Column(Integer)
    document_type = Column(String(32))
    confidence = Column(Float)
    issues = Column(JSON_TYPE)
    extraction_stored = Column(Boolean, nullable=False, default=False)
    trace = Column(JSON_TYPE)
    requested_by = Column(UUID_TYPE)
    queued_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))


class DocumentDraft(Base):
    __tablename__ = "document_drafts"
    __table_args__ = (UniqueConstraint("document_id", name="uq_document_drafts_document"),)

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    document_id = Column(UUID_TYPE, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(UUID_TYPE, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    run_id = Column(UUID_TYPE, ForeignKey("document_ingestion_runs.id", ondelete="SET NULL"))
    document_type = Column(String(32), nullable=False)
    extraction = Column(JSON_TYPE, nullable=False)
    description = Column(Text, nullable=False, default="")
    keywords = Column(JSON_TYPE, nullable=False, default=list)
    confidence = Column(Float, nullable=False, default=0.0)
    raw_text = Column(Text, nullable=False, default="")
    contact_id = Column(UUID_TYPE, ForeignKey("contacts.id", ondelete="SET NULL"))
    suggested_contact_id = Column(UUID_TYPE, ForeignKey("contacts.id", ondelete="SET NULL"))
    contact_created = Column(Boolean, nullable=False, default=False)
    link_decision_type = Column(String(16))
    link_decision_reason = Column(Text)
    link_decision_confidence = Column(Float)
    link_evidence = Column(JSON_TYPE)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class DocumentChunk(Base):
    __tablename__ = "document_chunks"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    document_id = Column(UUID_TYPE, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(UUID_TYPE, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)


class ExtractionExample(Base):
    __tablename__ = "extraction_examples"
    __table_args__ = (Index("ix_extraction_examples_tenant_vendor", "tenant_id", "vendor_vat_number"),)

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID_TYPE, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    document_id = Column(UUID_TYPE, ForeignKey("documents.id", ondelete="SET NULL"))
    vendor_vat_number = Column(String(32))
    document_type = Column(String(32), nullable=False)
    extraction = Column(JSON_TYPE, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(UUID_TYPE, nullable=False)
    action = Column(String(64), nullable=False)
    old_value = Column(JSON_TYPE)
    new_value = Column(JSON_TYPE)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(UUID_TYPE)
    audit_meta = Column("metadata", JSON_TYPE, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
