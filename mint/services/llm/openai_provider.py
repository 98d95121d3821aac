from __future__ import annotations

import requests

from mint.services.llm.base import BaseNotesProvider, GenerationError


class OpenAIProvider(BaseNotesProvider):
    """Notes provider for OpenAI and OpenAI-compatible APIs (LM Studio, vLLM, ...)."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str = "https://api.openai.com",
        logger_name: str = "mint.llm.openai",
    ) -> None:
        super().__init__(logger_name=logger_name)
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
        request_body = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
        }
        if json_mode:
            request_body["response_format"] = {"type": "json_object"}

        try:
            response = requests.post(
                f"{self._base_url}/v1/chat/completions",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json=request_body,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise GenerationError(f"Failed to reach {self._base_url}") from exc

        if response.status_code != 200:
            self._logger.error("OpenAI error: %s - %s", response.status_code, response.text[:500])
            raise GenerationError(f"OpenAI error: {response.status_code}")

        data = response.json()
        choices = data.get("choices", [])
        if not choices:
            raise GenerationError("OpenAI response missing choices")
        content = choices[0].get("message", {}).get("content") or ""
        return str(content).strip()
