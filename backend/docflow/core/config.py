from functools import lru_cache
from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

INTELLIGENCE_MODES = ("assisted", "autonomous", "sovereign")
CONTACT_LINK_POLICIES = ("VAT_ONLY", "VAT_OR_STRONG_SIGNALS")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )
    environment: str = "development"
    database_url: str = "sqlite:///./docflow.db"

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    auth_jwt_secret: str = ""
    auth_jwt_audience: str = "authenticated"

    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""
    documents_bucket: str = "documents"

    pii_redaction_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("PII_REDACTION_ENABLED"),
    )
    pii_redaction_fields: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [
            "email",
            "phone",
            "address",
            "iban",
            "vat_number",
            "vatNumber",
        ],
        validation_alias=AliasChoices("PII_REDACTION_FIELDS"),
    )

    enable_document_processing: bool = Field(
        default=True,
        validation_alias=AliasChoices("ENABLE_DOCUMENT_PROCESSING"),
    )
    enable_processing_worker: bool = False
    processing_worker_interval_seconds: int = 30
    processing_worker_batch_size: int = 5

    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=list)
    cors_allow_methods: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["GET", "POST", "OPTIONS"])
    cors_allow_headers: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["Authorization", "Content-Type", "Accept"])

    # --- AI providers ---
    ai_allowed_providers_raw: str = Field(
        default="mock",
        validation_alias=AliasChoices("AI_ALLOWED_PROVIDERS"),
    )
    ai_allowed_models_claude_raw: str = Field(
        default="",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS_CLAUDE"),
    )
    ai_allowed_models_openai_raw: str = Field(
        default="",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS_OPENAI"),
    )
    ai_allowed_models_groq_raw: str = Field(
        default="",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS_GROQ"),
    )
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    groq_api_key: str = ""

    ai_orchestrator_provider: str = "mock"
    ai_orchestrator_model: str = ""
    ai_vision_provider: str = "mock"
    ai_vision_model: str = ""
    ai_repair_provider: str = ""
    ai_repair_model: str = ""
    ai_timeout_seconds: float = 60.0
    ai_temperature: float = 0.1
    ai_max_tokens: int = 4096
    ai_debug_store_raw: bool = False
    enable_ai_overrides: bool = False

    # --- Orchestration ---
    intelligence_mode: str = Field(
        default="autonomous",
        validation_alias=AliasChoices("INTELLIGENCE_MODE", "AI_INTELLIGENCE_MODE"),
    )
    contact_link_policy: str = "VAT_ONLY"
    orchestrator_repair_max_chars: int = 12000
    default_max_pages: int | None = None
    default_dpi: int | None = None

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        "pii_redaction_fields",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            if value.strip() == "":
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("intelligence_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value):
        mode = str(value or "autonomous").strip().lower()
        if mode not in INTELLIGENCE_MODES:
            raise ValueError(f"Unknown intelligence mode: {value}")
        return mode

    @field_validator("contact_link_policy", mode="before")
    @classmethod
    def _normalize_link_policy(cls, value):
        policy = str(value or "VAT_ONLY").strip().upper()
        if policy not in CONTACT_LINK_POLICIES:
            raise ValueError(f"Unknown contact link policy: {value}")
        return policy

    @field_validator("default_max_pages", "default_dpi", mode="before")
    @classmethod
    def _empty_as_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @property
    def ai_allowed_providers(self) -> list[str]:
        providers = [item.strip().lower() for item in self.ai_allowed_providers_raw.split(",") if item.strip()]
        if "mock" not in providers:
            providers.append("mock")
        return providers

    @property
    def ai_allowed_models(self) -> dict[str, list[str]]:
        def _split(raw: str) -> list[str]:
            return [item.strip() for item in raw.split(",") if item.strip()]

        return {
            "claude": _split(self.ai_allowed_models_claude_raw),
            "openai": _split(self.ai_allowed_models_openai_raw),
            "groq": _split(self.ai_allowed_models_groq_raw),
            "mock": [],
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
