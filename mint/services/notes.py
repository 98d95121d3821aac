from __future__ import annotations

import asyncio
import logging
import os
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

from mint.services.llm import (
    AnthropicProvider,
    GeminiProvider,
    GenerationError,
    NotesProvider,
    OllamaProvider,
    OpenAIProvider,
)
from mint.services.models import Notes

if TYPE_CHECKING:
    from mint.context import AppContext


class NotesBackend(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OLLAMA = "ollama"
    LMSTUDIO = "lmstudio"


DEFAULT_MODELS = {
    NotesBackend.OPENAI: "gpt-4o",
    NotesBackend.ANTHROPIC: "claude-3-5-sonnet-latest",
    NotesBackend.GEMINI: "gemini-2.0-flash",
    NotesBackend.OLLAMA: "llama3.1",
    NotesBackend.LMSTUDIO: "local-model",
}

API_KEY_ENV = {
    NotesBackend.OPENAI: "OPENAI_API_KEY",
    NotesBackend.ANTHROPIC: "ANTHROPIC_API_KEY",
    NotesBackend.GEMINI: "GEMINI_API_KEY",
}

BackendChoice = Union[NotesBackend, str, None]


def parse_backend(value: Union[NotesBackend, str]) -> NotesBackend:
    if isinstance(value, NotesBackend):
        return value
    try:
        return NotesBackend(str(value).strip().lower())
    except ValueError as exc:
        raise GenerationError(f"Unknown notes backend: {value}") from exc


def create_provider(
    backend: NotesBackend,
    model: Optional[str] = None,
    api_key: str = "",
    base_url: str = "",
) -> NotesProvider:
    """Build a fresh provider for one call."""
    model = model or DEFAULT_MODELS[backend]

    if backend == NotesBackend.OLLAMA:
        return OllamaProvider(base_url=base_url or "http://127.0.0.1:11434", model=model)

    if backend == NotesBackend.LMSTUDIO:
        return OpenAIProvider(
            api_key=api_key or "lmstudio",
            model=model,
            base_url=base_url or "http://127.0.0.1:1234",
            logger_name="mint.llm.lmstudio",
        )

    if not api_key:
        raise GenerationError(
            f"Missing {backend.value} API key. Set providers.{backend.value}.api_key "
            f"in config.json or {API_KEY_ENV[backend]}."
        )

    if backend == NotesBackend.OPENAI:
        return OpenAIProvider(api_key=api_key, model=model, base_url=base_url or "https://api.openai.com")
    if backend == NotesBackend.ANTHROPIC:
        return AnthropicProvider(api_key=api_key, model=model)
    if backend == NotesBackend.GEMINI:
        return GeminiProvider(api_key=api_key, model=model)

    raise GenerationError(f"Unknown notes backend: {backend}")


class NotesService:
    """Turns a flat transcript into Notes using the configured backend.

    Reads the selection from config.json on every call:
    - models.selected_backend: one of NotesBackend (default "openai")
    - models.model: optional model id
    - providers.<backend>: api_key and base_url
    """

    def __init__(self, ctx: "AppContext") -> None:
        self._ctx = ctx
        self._logger = logging.getLogger("mint.notes")

    def _selected(self, override: BackendChoice = None) -> tuple[NotesBackend, Optional[str]]:
        models_config = self._ctx.read_config().get("models", {})
        if override:
            backend = parse_backend(override)
            model = models_config.get("model") if models_config.get("selected_backend") == backend.value else None
            return backend, model
        backend = parse_backend(models_config.get("selected_backend") or NotesBackend.OPENAI.value)
        return backend, models_config.get("model") or None

    def get_provider(self, override: BackendChoice = None) -> NotesProvider:
        backend, model = self._selected(override)
        provider_config = self._ctx.read_config().get("providers", {}).get(backend.value, {})
        api_key = provider_config.get("api_key") or os.environ.get(API_KEY_ENV.get(backend, ""), "")
        return create_provider(
            backend,
            model=model,
            api_key=api_key,
            base_url=provider_config.get("base_url", ""),
        )

    def generate_sync(self, transcript: str, backend: BackendChoice = None) -> Notes:
        if not transcript.strip():
            raise GenerationError("Transcript is empty")
        provider = self.get_provider(backend)
        self._logger.info(
            "Notes generation using provider=%s transcript_chars=%d",
            provider.__class__.__name__,
            len(transcript),
        )
        try:
            return provider.generate_notes(transcript)
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(str(exc)) from exc

    async def generate(self, transcript: str, backend: BackendChoice = None) -> Notes:
        return await asyncio.to_thread(self.generate_sync, transcript, backend)
