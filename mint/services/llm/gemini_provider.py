"""Gemini notes provider using Google's Generative Language REST API."""
from __future__ import annotations

import requests

from mint.services.llm.base import BaseNotesProvider, GenerationError


class GeminiProvider(BaseNotesProvider):
    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com",
    ) -> None:
        super().__init__(logger_name="mint.llm.gemini")
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")

    def _call_api(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float = 0.2,
        timeout: int = 120,
        json_mode: bool = True,
    ) -> str:
        model_name = self._model
        if not model_name.startswith("models/"):
            model_name = f"models/{model_name}"

        generation_config: dict = {"temperature": temperature}
        if json_mode:
            generation_config["responseMimeType"] = "application/json"

        try:
            response = requests.post(
                f"{self._base_url}/v1beta/{model_name}:generateContent",
                params={"key": self._api_key},
                headers={"Content-Type": "application/json"},
                json={
                    "contents": [{"parts": [{"text": f"{system_prompt}\n\n{prompt}"}]}],
                    "generationConfig": generation_config,
                },
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise GenerationError("Failed to reach Gemini API") from exc

        if response.status_code != 200:
            self._logger.error("Gemini error: %s - %s", response.status_code, response.text[:500])
            raise GenerationError(f"Gemini error: {response.status_code}")

        data = response.json()
        candidates = data.get("candidates", [])
        if not candidates:
            raise GenerationError("Gemini response missing candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        if not parts:
            raise GenerationError("Gemini response missing parts")
        return parts[0].get("text", "").strip()
