from __future__ import annotations

import json
import logging
import math
import os
import re
import shutil
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from mint.services.models import (
    ActionItem,
    MeetingMetadata,
    MeetingStatus,
    Notes,
    TranscriptEntry,
)

if TYPE_CHECKING:
    from mint.services.transcript_merge import TranscriptBuffers


METADATA_FILE = "metadata.json"
TRANSCRIPT_FILE = "transcript.md"
NOTES_FILE = "notes.md"
TAGS_FILE = "tags.json"

UNKNOWN_SPEAKER = "Unknown"

_TRANSCRIPT_LINE = re.compile(r"^\[(\d{2,}):(\d{2})\]\s\*\*(.+?)\*\*:\s(.+)$")
_ACTION_ITEM_LINE = re.compile(r"^-\s*\[[ x]\]\s*(.+)$")
_DUE_DATE = re.compile(r"\(due:\s*(.+?)\)")
_DUE_DATE_SUFFIX = re.compile(r"\s*\(due:\s*.+?\)")
_SLUG_INVALID = re.compile(r"[^a-z0-9]+")
_TITLE_BREAKS = re.compile(r"\s*[\r\n]+\s*")


class PersistenceError(RuntimeError):
    pass


class MeetingNotFoundError(KeyError):
    pass


def normalize_title(title: str) -> str:
    """Single-line title: it is written into the markdown headers."""
    return _TITLE_BREAKS.sub(" ", title).strip()


def format_timestamp(seconds: float) -> str:
    """Render seconds as zero-padded MM:SS (floor; minutes grow past two digits)."""
    total_seconds = max(0, math.floor(seconds))
    minutes, remaining = divmod(total_seconds, 60)
    return f"{minutes:02d}:{remaining:02d}"


def format_transcript_line(entry: TranscriptEntry) -> str:
    speaker = entry.speaker if entry.speaker is not None else UNKNOWN_SPEAKER
    return f"[{format_timestamp(entry.timestamp_start)}] **{speaker}**: {entry.content}\n"


def parse_transcript_markdown(markdown: str) -> list[TranscriptEntry]:
    """Re-parse transcript.md. Precision is whole seconds; ``Unknown`` maps back to None."""
    entries: list[TranscriptEntry] = []
    for line in markdown.split("\n"):
        match = _TRANSCRIPT_LINE.match(line)
        if not match:
            continue
        seconds = int(match.group(1)) * 60 + int(match.group(2))
        speaker: Optional[str] = match.group(3)
        if speaker == UNKNOWN_SPEAKER:
            speaker = None
        entries.append(
            TranscriptEntry(
                speaker=speaker,
                content=match.group(4),
                timestamp_start=float(seconds),
                timestamp_end=float(seconds),
            )
        )
    return entries


def render_notes_markdown(title: str, notes: Notes) -> str:
    decision_lines = "\n".join(f"- {decision}" for decision in notes.decisions)
    item_lines = []
    for item in notes.action_items:
        line = f"- [ ] {item.task}"
        if item.assignee:
            line += f" — {item.assignee}"
        if item.due_date:
            line += f" (due: {item.due_date})"
        item_lines.append(line)
    return "\n".join(
        [
            f"# Notes — {title}",
            "",
            "## Summary",
            notes.summary,
            "",
            "## Decisions",
            decision_lines or "- None",
            "",
            "## Action Items",
            "\n".join(item_lines) or "- [ ] None",
            "",
        ]
    )


def parse_notes_markdown(markdown: str) -> Notes:
    summary = ""
    decisions: list[str] = []
    action_items: list[ActionItem] = []

    for section in re.split(r"^## ", markdown, flags=re.MULTILINE):
        if section.startswith("Summary"):
            summary = re.sub(r"^Summary\n", "", section).strip()
        elif section.startswith("Decisions"):
            for line in re.sub(r"^Decisions\n", "", section).strip().split("\n"):
                cleaned = re.sub(r"^-\s*", "", line).strip()
                if cleaned and cleaned != "None":
                    decisions.append(cleaned)
        elif section.startswith("Action Items"):
            for line in re.sub(r"^Action Items\n", "", section).strip().split("\n"):
                match = _ACTION_ITEM_LINE.match(line)
                if not match:
                    continue
                raw = match.group(1)
                if raw == "None":
                    continue
                due_match = _DUE_DATE.search(raw)
                due_date = due_match.group(1) if due_match else None
                without_due = _DUE_DATE_SUFFIX.sub("", raw, count=1).strip()
                parts = without_due.split(" — ")
                task = parts[0].strip()
                assignee = parts[1].strip() if len(parts) > 1 else None
                action_items.append(ActionItem(task=task, assignee=assignee, due_date=due_date))

    return Notes(summary=summary, decisions=decisions, action_items=action_items)


def render_plain_transcript(entries: list[TranscriptEntry]) -> str:
    return "\n".join(
        f"{entry.speaker if entry.speaker is not None else UNKNOWN_SPEAKER}: {entry.content}"
        for entry in entries
    )


def iso_millis(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return iso_millis(datetime.now(timezone.utc))


def slugify(title: str) -> str:
    return _SLUG_INVALID.sub("-", title.lower()).strip("-")


class MeetingStore:
    """Folder-per-meeting store: metadata.json, append-only transcript.md, notes.md.

    Every method is blocking file I/O; async callers go through ``asyncio.to_thread``.
    """

    def __init__(
        self,
        storage_path: Callable[[], str] | str,
        buffers: Optional["TranscriptBuffers"] = None,
    ) -> None:
        self._storage_path = storage_path
        self._buffers = buffers
        self._lock = threading.RLock()
        self._logger = logging.getLogger("mint.meetings")

    @property
    def storage_path(self) -> str:
        if callable(self._storage_path):
            return self._storage_path()
        return self._storage_path

    def _meeting_dir(self, meeting_id: str) -> str:
        if not meeting_id or meeting_id in (".", "..") or "/" in meeting_id or os.sep in meeting_id:
            raise MeetingNotFoundError(meeting_id)
        return os.path.join(self.storage_path, meeting_id)

    def _read_metadata(self, meeting_id: str) -> MeetingMetadata:
        path = os.path.join(self._meeting_dir(meeting_id), METADATA_FILE)
        try:
            with open(path, "r", encoding="utf-8") as f:
                record = json.load(f)
        except FileNotFoundError as exc:
            raise MeetingNotFoundError(meeting_id) from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read metadata for {meeting_id}: {exc}") from exc
        try:
            return MeetingMetadata.from_record(record)
        except (KeyError, ValueError, TypeError) as exc:
            raise PersistenceError(f"Invalid metadata for {meeting_id}: {exc}") from exc

    def _write_metadata(self, metadata: MeetingMetadata) -> None:
        path = os.path.join(self._meeting_dir(metadata.id), METADATA_FILE)
        temp_path = f"{path}.tmp"
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(json.dumps(metadata.to_record(), indent=2, ensure_ascii=False))
            os.replace(temp_path, path)
        except OSError as exc:
            raise PersistenceError(f"Failed to write metadata for {metadata.id}: {exc}") from exc

    # ── meetings ───────────────────────────────────────────────────────

    def create_meeting(self, title: str) -> MeetingMetadata:
        title = normalize_title(title)
        with self._lock:
            now = datetime.now(timezone.utc)
            folder_stamp = now.strftime("%Y-%m-%dT%H-%M-%S")
            base_id = f"{folder_stamp}_{slugify(title)}"
            meeting_id = base_id
            suffix = 2
            try:
                os.makedirs(self.storage_path, exist_ok=True)
                while os.path.exists(os.path.join(self.storage_path, meeting_id)):
                    meeting_id = f"{base_id}-{suffix}"
                    suffix += 1
                meeting_dir = self._meeting_dir(meeting_id)
                os.makedirs(meeting_dir)
                with open(os.path.join(meeting_dir, TRANSCRIPT_FILE), "w", encoding="utf-8") as f:
                    f.write(f"# Transcript — {title}\n\n")
            except OSError as exc:
                raise PersistenceError(f"Failed to create meeting folder: {exc}") from exc

            metadata = MeetingMetadata(
                id=meeting_id,
                title=title,
                status=MeetingStatus.RECORDING,
                started_at=iso_millis(now),
                ended_at=None,
            )
            self._write_metadata(metadata)
            if self._buffers is not None:
                self._buffers.create(meeting_id)
            self._logger.info("Meeting created: id=%s path=%s", meeting_id, meeting_dir)
            return metadata

    def get_meeting(self, meeting_id: str) -> MeetingMetadata:
        with self._lock:
            return self._read_metadata(meeting_id)

    def list_meetings(self) -> list[MeetingMetadata]:
        with self._lock:
            try:
                names = os.listdir(self.storage_path)
            except FileNotFoundError:
                return []
            except OSError as exc:
                self._logger.warning("Failed to list storage path: %s", exc)
                return []
            meetings: list[MeetingMetadata] = []
            for name in names:
                if not os.path.isdir(os.path.join(self.storage_path, name)):
                    continue
                try:
                    meetings.append(self._read_metadata(name))
                except (MeetingNotFoundError, PersistenceError) as exc:
                    self._logger.debug("Skipping folder without valid metadata: %s (%s)", name, exc)
            return sorted(meetings, key=lambda m: m.started_at, reverse=True)

    def update_status(
        self,
        meeting_id: str,
        status: MeetingStatus,
        ended_at: Optional[str] = None,
    ) -> MeetingMetadata:
        with self._lock:
            metadata = self._read_metadata(meeting_id)
            metadata.status = status
            if ended_at:
                metadata.ended_at = ended_at
            self._write_metadata(metadata)
            self._logger.info("Meeting status: id=%s status=%s", meeting_id, status.value)
            return metadata

    def rename_meeting(self, meeting_id: str, title: str) -> MeetingMetadata:
        with self._lock:
            metadata = self._read_metadata(meeting_id)
            metadata.title = normalize_title(title)
            self._write_metadata(metadata)
            return metadata

    def delete_meeting(self, meeting_id: str) -> None:
        with self._lock:
            meeting_dir = self._meeting_dir(meeting_id)
            if not os.path.isdir(meeting_dir):
                raise MeetingNotFoundError(meeting_id)
            try:
                shutil.rmtree(meeting_dir)
            except OSError as exc:
                raise PersistenceError(f"Failed to delete meeting {meeting_id}: {exc}") from exc
            self.clear_transcript_buffer(meeting_id)
            self._logger.info("Meeting deleted: id=%s", meeting_id)

    def get_tags(self, meeting_id: str) -> list[str]:
        path = os.path.join(self._meeting_dir(meeting_id), TAGS_FILE)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read tags for {meeting_id}: {exc}") from exc
        return [str(tag) for tag in data] if isinstance(data, list) else []

    def set_tags(self, meeting_id: str, tag_ids: list[str]) -> list[str]:
        with self._lock:
            self._read_metadata(meeting_id)
            tags = sorted({str(tag) for tag in tag_ids if str(tag).strip()})
            path = os.path.join(self._meeting_dir(meeting_id), TAGS_FILE)
            try:
                if tags:
                    with open(path, "w", encoding="utf-8") as f:
                        json.dump(tags, f, indent=2)
                elif os.path.exists(path):
                    os.remove(path)
            except OSError as exc:
                raise PersistenceError(f"Failed to write tags for {meeting_id}: {exc}") from exc
            return tags

    # ── transcript ─────────────────────────────────────────────────────

    def append_transcript_entry(self, meeting_id: str, entry: TranscriptEntry) -> None:
        path = os.path.join(self._meeting_dir(meeting_id), TRANSCRIPT_FILE)
        line = format_transcript_line(entry)
        with self._lock:
            try:
                with open(path, "a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as exc:
                raise PersistenceError(f"Failed to append transcript for {meeting_id}: {exc}") from exc

    def read_transcript_entries(self, meeting_id: str) -> list[TranscriptEntry]:
        path = os.path.join(self._meeting_dir(meeting_id), TRANSCRIPT_FILE)
        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise PersistenceError(f"Failed to read transcript for {meeting_id}: {exc}") from exc
        return parse_transcript_markdown(content)

    def get_full_transcript(self, meeting_id: str) -> str:
        """Flat ``speaker: content`` text; the in-memory buffer wins over the disk log."""
        if self._buffers is not None:
            buffered = self._buffers.entries(meeting_id)
            if buffered:
                return render_plain_transcript(buffered)
        return render_plain_transcript(self.read_transcript_entries(meeting_id))

    def clear_transcript_buffer(self, meeting_id: str) -> None:
        if self._buffers is not None:
            self._buffers.clear(meeting_id)

    # ── notes ──────────────────────────────────────────────────────────

    def save_notes(self, meeting_id: str, notes: Notes) -> None:
        with self._lock:
            metadata = self._read_metadata(meeting_id)
            path = os.path.join(self._meeting_dir(meeting_id), NOTES_FILE)
            temp_path = f"{path}.tmp"
            try:
                with open(temp_path, "w", encoding="utf-8") as f:
                    f.write(render_notes_markdown(metadata.title, notes))
                os.replace(temp_path, path)
            except OSError as exc:
                raise PersistenceError(f"Failed to write notes for {meeting_id}: {exc}") from exc
            self._logger.info(
                "Notes saved: id=%s decisions=%d action_items=%d",
                meeting_id,
                len(notes.decisions),
                len(notes.action_items),
            )

    def delete_notes(self, meeting_id: str) -> bool:
        path = os.path.join(self._meeting_dir(meeting_id), NOTES_FILE)
        with self._lock:
            try:
                os.remove(path)
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise PersistenceError(f"Failed to remove notes for {meeting_id}: {exc}") from exc
        self._logger.info("Notes removed: id=%s", meeting_id)
        return True

    def get_notes(self, meeting_id: str) -> Optional[Notes]:
        path = os.path.join(self._meeting_dir(meeting_id), NOTES_FILE)
        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"Failed to read notes for {meeting_id}: {exc}") from exc
        return parse_notes_markdown(content)
