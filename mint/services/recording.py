"""
Meeting lifecycle controller.

Owns the single active recording: a microphone path (fatal on failure) and a
system-audio path (optional, downgrades to mic-only), each a frame producer
feeding a streaming transcription session. Stopping tears everything down step
by step, moves the meeting to ``processing`` and then to ``completed`` or
``failed`` after notes generation.

Everything here runs on the asyncio loop thread. Blocking disk work goes
through ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from mint.services.audio_capture import AudioCaptureService, DeviceError, find_loopback_device
from mint.services.llm import GenerationError
from mint.services.meeting_store import normalize_title, utc_now_iso
from mint.services.models import MeetingMetadata, MeetingStatus, can_transition
from mint.services.transcript_merge import TranscriptMerger
from mint.services.transcription import DeepgramSession, StreamConfig
from mint.services.transcription.base import ResultCallback, StreamingSession

if TYPE_CHECKING:
    from mint.context import AppContext
    from mint.services.live_feed import LiveFeed
    from mint.services.meeting_store import MeetingStore
    from mint.services.notes import NotesService
    from mint.services.transcript_merge import TranscriptBuffers

MIC_SOURCE = "mic"
SYSTEM_SOURCE = "system"
DEFAULT_TITLE = "Untitled Meeting"


class StateError(RuntimeError):
    pass


class FrameProducer(Protocol):
    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> dict: ...

    def stop(self) -> None: ...


@dataclass(frozen=True)
class RecordingSettings:
    api_key: str = ""
    mic_device: Optional[int] = None
    system_device: Optional[int] = None
    system_audio: bool = True
    samplerate: int = 16000
    frame_ms: int = 100
    model: str = "nova-2"
    language: str = "en"
    mic_label: str = "You"
    system_label: str = "Others"
    connect_timeout: float = 10.0

    def label_for(self, source: str) -> str:
        return self.mic_label if source == MIC_SOURCE else self.system_label


def load_recording_settings(ctx: "AppContext") -> RecordingSettings:
    """Read audio and transcription settings from config.json (env fallback for the key)."""
    config = ctx.read_config()
    audio = config.get("audio", {})
    transcription = config.get("transcription", {})
    defaults = RecordingSettings()
    return RecordingSettings(
        api_key=transcription.get("api_key") or os.environ.get("DEEPGRAM_API_KEY", ""),
        mic_device=audio.get("device_index"),
        system_device=audio.get("system_device_index"),
        system_audio=bool(audio.get("system_audio", True)),
        samplerate=int(audio.get("samplerate") or defaults.samplerate),
        frame_ms=int(audio.get("frame_ms") or defaults.frame_ms),
        model=transcription.get("model") or defaults.model,
        language=transcription.get("language") or defaults.language,
        mic_label=transcription.get("mic_label") or defaults.mic_label,
        system_label=transcription.get("system_label") or defaults.system_label,
        connect_timeout=float(transcription.get("connect_timeout") or defaults.connect_timeout),
    )


SessionFactory = Callable[[str, RecordingSettings, ResultCallback], StreamingSession]
ProducerFactory = Callable[[str, RecordingSettings, Callable[[bytes], None]], FrameProducer]


def default_session_factory(
    source: str, settings: RecordingSettings, on_result: ResultCallback
) -> StreamingSession:
    return DeepgramSession(
        session_id=source,
        speaker_label=settings.label_for(source),
        on_result=on_result,
        config=StreamConfig(
            model=settings.model,
            language=settings.language,
            sample_rate=settings.samplerate,
        ),
        connect_timeout=settings.connect_timeout,
    )


def default_producer_factory(
    source: str, settings: RecordingSettings, on_frame: Callable[[bytes], None]
) -> FrameProducer:
    device = settings.mic_device
    if source == SYSTEM_SOURCE:
        device = settings.system_device
        if device is None:
            device = find_loopback_device()
        if device is None:
            raise DeviceError("No system audio loopback device found")
    return AudioCaptureService(
        name=source,
        on_frame=on_frame,
        device=device,
        target_rate=settings.samplerate,
        frame_ms=settings.frame_ms,
    )


@dataclass
class RecordingState:
    """Everything built for one active recording."""

    meeting: MeetingMetadata
    merger: TranscriptMerger
    settings: RecordingSettings
    sessions: dict[str, StreamingSession] = field(default_factory=dict)
    producers: dict[str, FrameProducer] = field(default_factory=dict)
    system_audio: bool = False

    @property
    def meeting_id(self) -> str:
        return self.meeting.id


class RecordingController:
    def __init__(
        self,
        store: "MeetingStore",
        buffers: "TranscriptBuffers",
        notes_service: "NotesService",
        feed: "LiveFeed",
        session_factory: SessionFactory = default_session_factory,
        producer_factory: ProducerFactory = default_producer_factory,
        settings: Optional[Callable[[], RecordingSettings]] = None,
    ) -> None:
        self._store = store
        self._buffers = buffers
        self._notes = notes_service
        self._feed = feed
        self._session_factory = session_factory
        self._producer_factory = producer_factory
        self._settings = settings or RecordingSettings
        self._actor = asyncio.Lock()
        self._state: Optional[RecordingState] = None
        self._processing: set[str] = set()
        self._logger = logging.getLogger("mint.recording")

    # ── queries ────────────────────────────────────────────────────────

    @property
    def meeting_id(self) -> Optional[str]:
        return self._state.meeting_id if self._state else None

    @property
    def state(self) -> Optional[RecordingState]:
        return self._state

    def status(self) -> dict:
        state = self._state
        if state is None:
            return {
                "recording": False,
                "meeting_id": None,
                "processing": sorted(self._processing),
            }
        return {
            "recording": True,
            "meeting_id": state.meeting_id,
            "title": state.meeting.title,
            "started_at": state.meeting.started_at,
            "system_audio": state.system_audio,
            "sessions": {name: session.is_connected for name, session in state.sessions.items()},
            "transcript": state.merger.live_view(),
            "processing": sorted(self._processing),
        }

    # ── start ──────────────────────────────────────────────────────────

    async def start(self, title: Optional[str] = None) -> dict:
        async with self._actor:
            if self._state is not None:
                raise StateError(f"Recording already active: {self._state.meeting_id}")

            settings = self._settings()
            title = normalize_title(title or "") or DEFAULT_TITLE
            meeting = await asyncio.to_thread(self._store.create_meeting, title)
            merger = TranscriptMerger(meeting.id, self._store, self._buffers, self._feed)
            state = RecordingState(meeting=meeting, merger=merger, settings=settings)
            self._logger.info("Recording start: meeting=%s title=%s", meeting.id, title)

            try:
                await self._start_source(state, MIC_SOURCE)
            except Exception as exc:
                self._logger.warning("Mic path failed, aborting start: meeting=%s error=%s", meeting.id, exc)
                await self._teardown(state)
                await self._mark_failed(meeting.id)
                self._buffers.clear(meeting.id)
                self._feed.publish("recording_status", meeting.id, {"status": "error", "detail": str(exc)})
                raise

            if settings.system_audio:
                try:
                    await self._start_source(state, SYSTEM_SOURCE)
                    state.system_audio = True
                except Exception as exc:
                    self._logger.warning("System audio unavailable, continuing mic-only: %s", exc)
                    await self._stop_source(state, SYSTEM_SOURCE)
                    self._feed.publish(
                        "system_audio",
                        meeting.id,
                        {"available": False, "detail": str(exc)},
                    )

            self._state = state
            self._feed.publish(
                "recording_status",
                meeting.id,
                {"status": MeetingStatus.RECORDING.value, "system_audio": state.system_audio},
            )
            return {
                "status": MeetingStatus.RECORDING.value,
                "meeting_id": meeting.id,
                "title": meeting.title,
                "started_at": meeting.started_at,
                "system_audio": state.system_audio,
            }

    async def _start_source(self, state: RecordingState, source: str) -> None:
        # Session first: frames only flow once the provider has accepted the stream.
        session = self._session_factory(source, state.settings, state.merger.handle)
        state.sessions[source] = session
        await session.open(state.settings.api_key)
        producer = self._producer_factory(source, state.settings, session.feed)
        state.producers[source] = producer
        info = await asyncio.to_thread(producer.start, asyncio.get_running_loop())
        self._logger.info("Source started: meeting=%s source=%s device=%s", state.meeting_id, source, info)

    async def _stop_source(self, state: RecordingState, source: str) -> None:
        producer = state.producers.pop(source, None)
        if producer is not None:
            try:
                await asyncio.to_thread(producer.stop)
            except Exception as exc:
                self._logger.warning("Producer stop failed: source=%s error=%s", source, exc)
        session = state.sessions.pop(source, None)
        if session is not None:
            try:
                await session.close()
            except Exception as exc:
                self._logger.warning("Session close failed: source=%s error=%s", source, exc)

    async def _teardown(self, state: RecordingState) -> None:
        """Stop all producers, then close all sessions, then flush the merger."""
        for source, producer in list(state.producers.items()):
            try:
                await asyncio.to_thread(producer.stop)
            except Exception as exc:
                self._logger.warning("Producer stop failed: source=%s error=%s", source, exc)
        state.producers.clear()
        for source, session in list(state.sessions.items()):
            try:
                await session.close()
            except Exception as exc:
                self._logger.warning("Session close failed: source=%s error=%s", source, exc)
        state.sessions.clear()
        try:
            await state.merger.close()
        except Exception as exc:
            self._logger.warning("Transcript flush failed: meeting=%s error=%s", state.meeting_id, exc)

    # ── stop ───────────────────────────────────────────────────────────

    async def stop(self) -> dict:
        async with self._actor:
            state = self._state
            if state is None:
                self._logger.info("Stop requested with no active recording")
                return {"status": "idle", "meeting_id": None}
            meeting_id = state.meeting_id
            self._logger.info("Recording stop: meeting=%s", meeting_id)
            await self._teardown(state)
            self._state = None
            self._processing.add(meeting_id)

        try:
            if not await self._transition(meeting_id, MeetingStatus.PROCESSING):
                return {"status": MeetingStatus.FAILED.value, "meeting_id": meeting_id}
            status = await self._post_process(meeting_id)
        finally:
            self._processing.discard(meeting_id)
            self._buffers.clear(meeting_id)
        return {"status": status.value, "meeting_id": meeting_id}

    async def _post_process(self, meeting_id: str, backend: Optional[str] = None) -> MeetingStatus:
        try:
            transcript = await asyncio.to_thread(self._store.get_full_transcript, meeting_id)
            if not transcript.strip():
                self._logger.info("Empty transcript, completing without notes: meeting=%s", meeting_id)
                await self._set_status(meeting_id, MeetingStatus.COMPLETED)
                return MeetingStatus.COMPLETED
            notes = await self._notes.generate(transcript, backend)
            await asyncio.to_thread(self._store.save_notes, meeting_id, notes)
            await self._set_status(meeting_id, MeetingStatus.COMPLETED)
            return MeetingStatus.COMPLETED
        except GenerationError as exc:
            self._logger.warning("Notes generation failed: meeting=%s error=%s", meeting_id, exc)
        except Exception as exc:
            self._logger.exception("Post-processing failed: meeting=%s error=%s", meeting_id, exc)
        # A failed meeting carries no notes, including ones from an earlier run.
        try:
            await asyncio.to_thread(self._store.delete_notes, meeting_id)
        except Exception as exc:
            self._logger.error("Could not remove previous notes: meeting=%s error=%s", meeting_id, exc)
        await self._mark_failed(meeting_id)
        return MeetingStatus.FAILED

    async def _transition(self, meeting_id: str, target: MeetingStatus) -> bool:
        try:
            await self._set_status(meeting_id, target)
            return True
        except Exception as exc:
            self._logger.error("Status transition to %s failed: meeting=%s error=%s", target.value, meeting_id, exc)
            await self._mark_failed(meeting_id)
            return False

    async def _set_status(self, meeting_id: str, target: MeetingStatus) -> None:
        current = await asyncio.to_thread(self._store.get_meeting, meeting_id)
        if not can_transition(current.status, target):
            raise StateError(f"Invalid transition {current.status.value} -> {target.value}")
        ended_at = utc_now_iso() if target in (MeetingStatus.COMPLETED, MeetingStatus.FAILED) else None
        await asyncio.to_thread(self._store.update_status, meeting_id, target, ended_at)
        self._feed.publish("recording_status", meeting_id, {"status": target.value})

    async def _mark_failed(self, meeting_id: str) -> None:
        try:
            await self._set_status(meeting_id, MeetingStatus.FAILED)
        except Exception as exc:
            # Left for the next manual recovery action.
            self._logger.error("Could not record failed status: meeting=%s error=%s", meeting_id, exc)

    # ── regenerate ─────────────────────────────────────────────────────

    async def regenerate_notes(self, meeting_id: str, backend: Optional[str] = None) -> dict:
        async with self._actor:
            if self.meeting_id == meeting_id:
                raise StateError("Meeting is still recording")
            if meeting_id in self._processing:
                raise StateError("Meeting is already processing")
            meeting = await asyncio.to_thread(self._store.get_meeting, meeting_id)
            # A processing status with no run behind it is left over from a crash or a lost status write.
            stale = meeting.status == MeetingStatus.PROCESSING
            if not stale and not can_transition(meeting.status, MeetingStatus.PROCESSING):
                raise StateError(f"Cannot regenerate notes while {meeting.status.value}")
            self._processing.add(meeting_id)

        try:
            self._logger.info("Regenerating notes: meeting=%s backend=%s stale=%s", meeting_id, backend, stale)
            if stale:
                self._feed.publish("recording_status", meeting_id, {"status": MeetingStatus.PROCESSING.value})
            elif not await self._transition(meeting_id, MeetingStatus.PROCESSING):
                return {"status": MeetingStatus.FAILED.value, "meeting_id": meeting_id}
            status = await self._post_process(meeting_id, backend)
        finally:
            self._processing.discard(meeting_id)
        return {"status": status.value, "meeting_id": meeting_id}

    async def shutdown(self) -> None:
        """Best-effort stop on application shutdown."""
        if self._state is None:
            return
        await self.stop()

