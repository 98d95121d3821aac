from __future__ import annotations

import requests

from mint.services.llm.base import BaseNotesProvider, GenerationError


class AnthropicProvider(BaseNotesProvider):
    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-sonnet-latest",
        base_url: str = "https://api.anthropic.com",
    ) -> None:
        super().__init__(logger_name="mint.llm.anthropic")
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
        # No JSON mode on the Messages API; the system prompt carries the shape.
        try:
            response = requests.post(
                f"{self._base_url}/v1/messages",
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json={
                    "model": self._model,
                    "max_tokens": 4096,
                    "temperature": temperature,
                    "system": system_prompt,
                    "messages": [{"role": "user", "content": prompt}],
                },
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise GenerationError("Failed to reach Anthropic") from exc

        if response.status_code != 200:
            self._logger.error("Anthropic error: %s - %s", response.status_code, response.text[:500])
            raise GenerationError(f"Anthropic error: {response.status_code}")

        data = response.json()
        content_blocks = data.get("content", [])
        if not content_blocks:
            raise GenerationError("Anthropic response missing content")
        return "".join(block.get("text", "") for block in content_blocks).strip()
