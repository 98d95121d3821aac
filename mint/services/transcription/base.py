from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class TranscriptResult:
    """One provider result, tagged with the session it came from."""

    session_id: str
    speaker: Optional[str]
    content: str
    timestamp_start: float
    timestamp_end: float
    is_final: bool


ResultCallback = Callable[[TranscriptResult], None]


class SessionConnectionError(RuntimeError):
    pass


class StreamingSession(ABC):
    """A live speech-to-text connection bound to one audio source and one speaker label.

    Results are delivered through ``on_result`` on the event-loop thread, in
    provider order. After ``close()`` no further results are delivered.
    """

    def __init__(self, session_id: str, speaker_label: Optional[str], on_result: ResultCallback) -> None:
        self.session_id = session_id
        self.speaker_label = speaker_label
        self._on_result = on_result

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def open(self, credential: str) -> None:
        """Connect and complete the provider readiness handshake.

        Raises:
            SessionConnectionError: provider unreachable, credentials rejected,
                or the handshake did not complete.
        """
        raise NotImplementedError

    @abstractmethod
    def feed(self, frame: bytes) -> None:
        """Forward one PCM frame. Never blocks; dropped when not connected."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Terminate the connection. Safe to call more than once."""
        raise NotImplementedError
