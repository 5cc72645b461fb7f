"""Groq provider (OpenAI-compatible API)."""

from __future__ import annotations

from .openai import OpenAIProvider


class GroqProvider(OpenAIProvider):
    name = "groq"
    api_url = "https://api.groq.com/openai/v1/chat/completions"
    default_model = "llama-3.3-70b-versatile"
