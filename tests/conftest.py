"""
Pytest fixtures and fakes for mint tests.

The fakes stand in for the two outside collaborators of a recording (the
streaming transcription provider and the audio device) and for the notes
backend, so the lifecycle can be driven deterministically.
"""

from typing import Optional

import pytest

from mint.context import AppContext
from mint.services.live_feed import LiveFeed
from mint.services.meeting_store import MeetingStore
from mint.services.models import Notes
from mint.services.recording import RecordingController, RecordingSettings
from mint.services.transcript_merge import TranscriptBuffers
from mint.services.transcription.base import StreamingSession, TranscriptResult


class FakeSession(StreamingSession):
    def __init__(self, session_id, speaker_label, on_result, fail_open: Optional[Exception] = None):
        super().__init__(session_id, speaker_label, on_result)
        self.fail_open = fail_open
        self.credential = None
        self.opened = False
        self.closed = False
        self.close_calls = 0
        self.frames: list[bytes] = []

    @property
    def is_connected(self) -> bool:
        return self.opened and not self.closed

    async def open(self, credential: str) -> None:
        self.credential = credential
        if self.fail_open is not None:
            raise self.fail_open
        self.opened = True

    def feed(self, frame: bytes) -> None:
        if self.is_connected:
            self.frames.append(frame)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    def emit(self, content: str, start: float, end: float, is_final: bool = True) -> None:
        """Deliver a provider result the way a live session would."""
        if self.closed:
            return
        self._on_result(
            TranscriptResult(
                session_id=self.session_id,
                speaker=self.speaker_label,
                content=content,
                timestamp_start=start,
                timestamp_end=end,
                is_final=is_final,
            )
        )


class FakeProducer:
    def __init__(self, name, on_frame, fail_start: Optional[Exception] = None, fail_stop: Optional[Exception] = None):
        self.name = name
        self.on_frame = on_frame
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.start_calls = 0
        self.stop_calls = 0

    def start(self, loop=None) -> dict:
        self.start_calls += 1
        if self.fail_start is not None:
            raise self.fail_start
        return {"device": None, "name": f"fake-{self.name}"}

    def stop(self) -> None:
        self.stop_calls += 1
        if self.fail_stop is not None:
            raise self.fail_stop


class Rig:
    """Session and producer factories that remember what they built."""

    def __init__(self):
        self.session_failures: dict[str, Exception] = {}
        self.producer_failures: dict[str, Exception] = {}
        self.producer_stop_failures: dict[str, Exception] = {}
        self.sessions: dict[str, FakeSession] = {}
        self.producers: dict[str, FakeProducer] = {}

    def session_factory(self, source, settings, on_result):
        session = FakeSession(
            source,
            settings.label_for(source),
            on_result,
            fail_open=self.session_failures.get(source),
        )
        self.sessions[source] = session
        return session

    def producer_factory(self, source, settings, on_frame):
        producer = FakeProducer(
            source,
            on_frame,
            fail_start=self.producer_failures.get(source),
            fail_stop=self.producer_stop_failures.get(source),
        )
        self.producers[source] = producer
        return producer


class FakeNotesService:
    def __init__(self, notes: Optional[Notes] = None, error: Optional[Exception] = None):
        self.notes = notes or Notes(summary="Discussed the launch.", decisions=["Ship it"], action_items=[])
        self.error = error
        self.calls: list[tuple[str, Optional[str]]] = []

    async def generate(self, transcript: str, backend=None) -> Notes:
        self.calls.append((transcript, backend))
        if self.error is not None:
            raise self.error
        return self.notes


@pytest.fixture
def buffers():
    return TranscriptBuffers()


@pytest.fixture
def store(tmp_path, buffers):
    return MeetingStore(str(tmp_path / "meetings"), buffers)


@pytest.fixture
def feed():
    return LiveFeed()


@pytest.fixture
def rig():
    return Rig()


@pytest.fixture
def notes_service():
    return FakeNotesService()


@pytest.fixture
def make_controller(store, buffers, feed, rig, notes_service):
    def build(settings: Optional[RecordingSettings] = None, notes=None):
        settings = settings or RecordingSettings(api_key="dg-test-key")
        return RecordingController(
            store,
            buffers,
            notes or notes_service,
            feed,
            session_factory=rig.session_factory,
            producer_factory=rig.producer_factory,
            settings=lambda: settings,
        )

    return build


@pytest.fixture
def app_context(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return AppContext(
        cwd=str(tmp_path),
        data_dir=str(data_dir),
        config_path=str(data_dir / "config.json"),
    )
