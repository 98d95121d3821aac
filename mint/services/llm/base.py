from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod

from mint.services.models import ActionItem, Notes

_OPENING_FENCE = re.compile(r"^```[\w-]*[ \t]*\n?")
_CLOSING_FENCE = re.compile(r"\n?[ \t]*```$")


class GenerationError(RuntimeError):
    pass


class NotesProvider(ABC):
    @abstractmethod
    def generate_notes(self, transcript: str) -> Notes:
        raise NotImplementedError


def strip_code_fences(text: str) -> str:
    """Remove leading/trailing markdown fence lines (```json ... ```)."""
    text = text.strip()
    if not text.startswith("```"):
        return text
    text = _OPENING_FENCE.sub("", text, count=1)
    text = _CLOSING_FENCE.sub("", text, count=1)
    return text.strip()


def _optional_text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none"):
        return None
    return text


def parse_notes(content: str) -> Notes:
    """Parse a provider response into Notes.

    Raises:
        GenerationError: the text is not JSON or not the expected shape.
    """
    text = strip_code_fences(content)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise GenerationError(f"Notes response is not valid JSON: {text[:200]}") from exc
    if not isinstance(parsed, dict):
        raise GenerationError(f"Notes response must be a JSON object, got {type(parsed).__name__}")

    summary = parsed.get("summary", "")
    if not isinstance(summary, str):
        raise GenerationError("Notes response field 'summary' must be a string")

    raw_decisions = parsed.get("decisions") or []
    if not isinstance(raw_decisions, list):
        raise GenerationError("Notes response field 'decisions' must be a list")
    decisions = [str(decision).strip() for decision in raw_decisions if str(decision).strip()]

    raw_items = parsed.get("actionItems", parsed.get("action_items")) or []
    if not isinstance(raw_items, list):
        raise GenerationError("Notes response field 'actionItems' must be a list")
    action_items: list[ActionItem] = []
    for raw in raw_items:
        if isinstance(raw, str):
            task = raw.strip()
            if task:
                action_items.append(ActionItem(task=task))
            continue
        if not isinstance(raw, dict):
            raise GenerationError("Action items must be objects with a 'task' field")
        task = str(raw.get("task") or raw.get("description") or "").strip()
        if not task:
            continue
        action_items.append(
            ActionItem(
                task=task,
                assignee=_optional_text(raw.get("assignee")),
                due_date=_optional_text(raw.get("dueDate", raw.get("due_date"))),
            )
        )

    return Notes(summary=summary.strip(), decisions=decisions, action_items=action_items)


class BaseNotesProvider(NotesProvider):
    """Shared prompt and response parsing.

    Subclasses only need to implement _call_api() for their specific API client.
    """

    SYSTEM_PROMPT = (
        "You are a meeting notes assistant. Analyze meeting transcripts and produce "
        "structured notes.\n\n"
        "Return a JSON object with exactly this shape:\n"
        "{\n"
        '  "summary": "An executive summary of the meeting in 2-4 paragraphs",\n'
        '  "decisions": ["Decision 1", "Decision 2"],\n'
        '  "actionItems": [{"task": "Description", "assignee": "Person or null", '
        '"dueDate": "Date or null"}]\n'
        "}\n\n"
        "Rules:\n"
        "- Summary should capture the key discussion points and outcomes\n"
        "- Extract every decision that was made, even implicit ones\n"
        "- Extract every action item, task, or follow-up mentioned\n"
        "- If an assignee or due date is mentioned, include them\n"
        "- Return ONLY valid JSON, no markdown fences"
    )

    def __init__(self, logger_name: str = "mint.llm") -> None:
        self._logger = logging.getLogger(logger_name)

    @abstractmethod
    def _call_api(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float = 0.2,
        timeout: int = 120,
        json_mode: bool = True,
    ) -> str:
        """Make an API call and return the raw response text."""
        raise NotImplementedError

    def generate_notes(self, transcript: str) -> Notes:
        content = self._call_api(
            f"Transcript:\n{transcript}",
            system_prompt=self.SYSTEM_PROMPT,
            temperature=0.2,
            timeout=120,
            json_mode=True,
        )
        try:
            return parse_notes(content)
        except GenerationError:
            self._logger.warning("Unparseable notes response: %s", content[:500])
            raise
