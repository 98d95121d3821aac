from mint.services.transcription.base import (
    ResultCallback,
    SessionConnectionError,
    StreamingSession,
    TranscriptResult,
)
from mint.services.transcription.deepgram import DeepgramSession, StreamConfig

__all__ = [
    "ResultCallback",
    "SessionConnectionError",
    "StreamingSession",
    "TranscriptResult",
    "DeepgramSession",
    "StreamConfig",
]
