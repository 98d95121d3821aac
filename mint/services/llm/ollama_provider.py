from __future__ import annotations

import requests

from mint.services.llm.base import BaseNotesProvider, GenerationError


class OllamaProvider(BaseNotesProvider):
    """Notes provider for local Ollama models."""

    def __init__(self, base_url: str = "http://127.0.0.1:11434", model: str = "llama3.1") -> None:
        super().__init__(logger_name="mint.llm.ollama")
        self._base_url = base_url.rstrip("/")
        self._model = model

    def _call_api(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float = 0.2,
        timeout: int = 300,
        json_mode: bool = True,
    ) -> str:
        request_body: dict = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "stream": False,
            "options": {"temperature": temperature},
        }
        if json_mode:
            request_body["format"] = "json"

        try:
            response = requests.post(
                f"{self._base_url}/api/chat",
                json=request_body,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise GenerationError(f"Failed to reach Ollama at {self._base_url}") from exc

        if response.status_code != 200:
            raise GenerationError(f"Ollama error: {response.status_code}")

        data = response.json()
        return str(data.get("message", {}).get("content", "")).strip()
