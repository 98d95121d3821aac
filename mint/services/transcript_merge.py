"""
Merge of live transcript results into a per-speaker feed.

Each (session, speaker) pair owns one slot holding at most one interim
entry. A final result empties its slot, goes to the in-memory buffer and the
live feed, and is queued for durable append. Slots never affect each other,
and ordering across slots is arrival order only.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from mint.services.meeting_store import PersistenceError
from mint.services.models import TranscriptEntry
from mint.services.transcription.base import TranscriptResult

if TYPE_CHECKING:
    from mint.services.live_feed import LiveFeed
    from mint.services.meeting_store import MeetingStore

_WHITESPACE_BREAKS = re.compile(r"\s*[\r\n]+\s*")

SlotKey = tuple[str, Optional[str]]


@dataclass(frozen=True)
class EmptySlot:
    pass


@dataclass(frozen=True)
class InterimSlot:
    entry: TranscriptEntry


SlotState = Union[EmptySlot, InterimSlot]

EMPTY = EmptySlot()


def normalize_content(text: str) -> str:
    """One-line content: the transcript log is line-oriented."""
    return _WHITESPACE_BREAKS.sub(" ", text).strip()


class TranscriptBuffers:
    """Finalized entries per meeting, kept in memory until notes generation consumes them."""

    def __init__(self) -> None:
        self._buffers: dict[str, list[TranscriptEntry]] = {}

    def create(self, meeting_id: str) -> None:
        self._buffers[meeting_id] = []

    def has(self, meeting_id: str) -> bool:
        return meeting_id in self._buffers

    def append(self, meeting_id: str, entry: TranscriptEntry) -> None:
        self._buffers.setdefault(meeting_id, []).append(entry)

    def entries(self, meeting_id: str) -> list[TranscriptEntry]:
        return list(self._buffers.get(meeting_id, ()))

    def clear(self, meeting_id: str) -> None:
        self._buffers.pop(meeting_id, None)


class TranscriptMerger:
    def __init__(
        self,
        meeting_id: str,
        store: "MeetingStore",
        buffers: TranscriptBuffers,
        feed: Optional["LiveFeed"] = None,
    ) -> None:
        self.meeting_id = meeting_id
        self._store = store
        self._buffers = buffers
        self._feed = feed
        self._slots: dict[SlotKey, SlotState] = {}
        self._finals: list[TranscriptEntry] = []
        self._append_queue: asyncio.Queue[Optional[TranscriptEntry]] = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self._closed = False
        self._append_failures = 0
        self._logger = logging.getLogger("mint.merge")

    @property
    def finals(self) -> list[TranscriptEntry]:
        return list(self._finals)

    @property
    def append_failures(self) -> int:
        return self._append_failures

    def slot(self, session_id: str, speaker: Optional[str]) -> SlotState:
        return self._slots.get((session_id, speaker), EMPTY)

    def interims(self) -> list[TranscriptEntry]:
        return [state.entry for state in self._slots.values() if isinstance(state, InterimSlot)]

    def live_view(self) -> list[dict]:
        view = [dict(entry.to_dict(), is_final=True) for entry in self._finals]
        view.extend(dict(entry.to_dict(), is_final=False) for entry in self.interims())
        return view

    def handle(self, result: TranscriptResult) -> None:
        if self._closed:
            return
        content = normalize_content(result.content)
        key: SlotKey = (result.session_id, result.speaker)
        if result.is_final:
            # A superseded interim is dropped, never persisted.
            self._slots[key] = EMPTY
            if not content:
                return
            entry = TranscriptEntry(
                speaker=result.speaker,
                content=content,
                timestamp_start=result.timestamp_start,
                timestamp_end=result.timestamp_end,
            )
            self._finals.append(entry)
            self._buffers.append(self.meeting_id, entry)
            self._enqueue_append(entry)
            self._publish(entry, is_final=True, session_id=result.session_id)
            return

        if not content:
            self._slots[key] = EMPTY
            return
        entry = TranscriptEntry(
            speaker=result.speaker,
            content=content,
            timestamp_start=result.timestamp_start,
            timestamp_end=result.timestamp_end,
        )
        self._slots[key] = InterimSlot(entry)
        self._publish(entry, is_final=False, session_id=result.session_id)

    def _publish(self, entry: TranscriptEntry, is_final: bool, session_id: str) -> None:
        if self._feed is None:
            return
        self._feed.publish(
            "transcript",
            self.meeting_id,
            dict(entry.to_dict(), is_final=is_final, session_id=session_id),
        )

    def _enqueue_append(self, entry: TranscriptEntry) -> None:
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(
                self._writer_loop(), name=f"transcript-writer-{self.meeting_id}"
            )
        self._append_queue.put_nowait(entry)

    async def _writer_loop(self) -> None:
        # Single writer keeps disk order equal to finalization order.
        while True:
            entry = await self._append_queue.get()
            try:
                if entry is None:
                    return
                await asyncio.to_thread(self._store.append_transcript_entry, self.meeting_id, entry)
            except PersistenceError as exc:
                self._append_failures += 1
                self._logger.error("Transcript append failed: meeting=%s error=%s", self.meeting_id, exc)
            except Exception as exc:
                self._append_failures += 1
                self._logger.exception("Unexpected transcript append error: %s", exc)
            finally:
                self._append_queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued entry has been written (or has failed)."""
        if self._writer is not None:
            await self._append_queue.join()

    async def close(self) -> None:
        """Stop accepting results, flush pending appends and stop the writer."""
        self._closed = True
        self._slots.clear()
        if self._writer is None:
            return
        self._append_queue.put_nowait(None)
        await self._writer
        self._writer = None
