from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class MeetingStatus(str, Enum):
    RECORDING = "recording"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# completed/failed -> processing is only taken by a user-triggered notes regeneration.
ALLOWED_TRANSITIONS: dict[MeetingStatus, frozenset[MeetingStatus]] = {
    MeetingStatus.RECORDING: frozenset({MeetingStatus.PROCESSING, MeetingStatus.FAILED}),
    MeetingStatus.PROCESSING: frozenset({MeetingStatus.COMPLETED, MeetingStatus.FAILED}),
    MeetingStatus.COMPLETED: frozenset({MeetingStatus.PROCESSING}),
    MeetingStatus.FAILED: frozenset({MeetingStatus.PROCESSING}),
}


def can_transition(current: MeetingStatus, target: MeetingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True)
class TranscriptEntry:
    """A finalized transcript segment. Timestamps are seconds on the provider clock."""

    speaker: Optional[str]
    content: str
    timestamp_start: float
    timestamp_end: float

    def to_dict(self) -> dict:
        return {
            "speaker": self.speaker,
            "content": self.content,
            "timestamp_start": self.timestamp_start,
            "timestamp_end": self.timestamp_end,
        }


@dataclass(frozen=True)
class ActionItem:
    task: str
    assignee: Optional[str] = None
    due_date: Optional[str] = None

    def to_dict(self) -> dict:
        return {"task": self.task, "assignee": self.assignee, "due_date": self.due_date}


@dataclass(frozen=True)
class Notes:
    summary: str
    decisions: list[str] = field(default_factory=list)
    action_items: list[ActionItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "decisions": list(self.decisions),
            "action_items": [item.to_dict() for item in self.action_items],
        }


@dataclass
class MeetingMetadata:
    id: str
    title: str
    status: MeetingStatus
    started_at: str
    ended_at: Optional[str] = None

    def to_record(self) -> dict:
        # Key order and names are the on-disk contract of metadata.json.
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
        }

    @classmethod
    def from_record(cls, record: dict) -> "MeetingMetadata":
        return cls(
            id=str(record["id"]),
            title=str(record.get("title", "")),
            status=MeetingStatus(record.get("status", MeetingStatus.FAILED.value)),
            started_at=str(record.get("startedAt", "")),
            ended_at=record.get("endedAt"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
        }
