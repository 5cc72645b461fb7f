"""AI Router: resolves provider + model per scope with override > ENV > mock chain."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from docflow.core.config import Settings, get_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)

SCOPES = ("orchestrator", "vision", "repair")


@dataclass(frozen=True)
class ResolvedConfig:
    """Final resolved provider + model after the override chain."""

    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


def _scope_env(scope: str, settings: Settings) -> tuple[str, str]:
    if scope == "orchestrator":
        return settings.ai_orchestrator_provider, settings.ai_orchestrator_model
    if scope == "vision":
        return settings.ai_vision_provider, settings.ai_vision_model
    # The repair agent reuses the orchestrator's provider unless configured on its own.
    if settings.ai_repair_provider:
        return settings.ai_repair_provider, settings.ai_repair_model
    return settings.ai_orchestrator_provider, settings.ai_repair_model or settings.ai_orchestrator_model


def resolve(
    scope: str,
    *,
    override_provider: str | None = None,
    override_model: str | None = None,
    settings: Settings | None = None,
) -> ResolvedConfig:
    """Resolve provider + model for a given *scope*.

    Resolution chain (first non-empty wins):
      1. ``override_provider`` / ``override_model`` (only when ``enable_ai_overrides=True``).
      2. ENV scope-specific: e.g. ``AI_VISION_PROVIDER`` / ``AI_VISION_MODEL``.
      3. ``"mock"`` with empty model.

    A model outside the provider's allowlist is replaced by the first allowed model.
    """
    if scope not in SCOPES:
        raise ValueError(f"Unknown AI scope: {scope}")
    settings = settings or get_settings()
    env_provider, env_model = _scope_env(scope, settings)

    provider_name = ""
    if settings.enable_ai_overrides and override_provider:
        provider_name = override_provider.lower().strip()
    if not provider_name:
        provider_name = (env_provider or "").lower().strip() or "mock"

    model = ""
    if settings.enable_ai_overrides and override_model:
        model = override_model.strip()
    if not model:
        model = (env_model or "").strip()

    allowed_models = settings.ai_allowed_models.get(provider_name, [])
    if allowed_models and model and model not in allowed_models:
        logger.warning(
            "Model %r not in allowlist for %r - using first allowed: %r",
            model,
            provider_name,
            allowed_models[0],
        )
        model = allowed_models[0]
    if allowed_models and not model:
        model = allowed_models[0]

    return ResolvedConfig(
        provider=get_provider(provider_name, settings),
        model=model,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
        timeout_seconds=settings.ai_timeout_seconds,
    )
