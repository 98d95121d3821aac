from mint.services.llm.base import (
    BaseNotesProvider,
    GenerationError,
    NotesProvider,
    parse_notes,
    strip_code_fences,
)
from mint.services.llm.anthropic_provider import AnthropicProvider
from mint.services.llm.gemini_provider import GeminiProvider
from mint.services.llm.ollama_provider import OllamaProvider
from mint.services.llm.openai_provider import OpenAIProvider

__all__ = [
    "BaseNotesProvider",
    "GenerationError",
    "NotesProvider",
    "parse_notes",
    "strip_code_fences",
    "AnthropicProvider",
    "GeminiProvider",
    "OllamaProvider",
    "OpenAIProvider",
]
