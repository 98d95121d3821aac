"""Deepgram live-streaming session over a websocket (aiohttp)."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from mint.services.transcription.base import (
    ResultCallback,
    SessionConnectionError,
    StreamingSession,
    TranscriptResult,
)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"


@dataclass(frozen=True)
class StreamConfig:
    model: str = "nova-2"
    language: str = "en"
    encoding: str = "linear16"
    sample_rate: int = 16000
    channels: int = 1
    smart_format: bool = True
    punctuate: bool = True
    diarize: bool = False
    interim_results: bool = True

    def to_query(self) -> dict[str, str]:
        def flag(value: bool) -> str:
            return "true" if value else "false"

        return {
            "model": self.model,
            "language": self.language,
            "encoding": self.encoding,
            "sample_rate": str(self.sample_rate),
            "channels": str(self.channels),
            "smart_format": flag(self.smart_format),
            "punctuate": flag(self.punctuate),
            "diarize": flag(self.diarize),
            "interim_results": flag(self.interim_results),
        }


def parse_results_message(
    payload: dict, session_id: str, speaker: Optional[str]
) -> Optional[TranscriptResult]:
    """Turn a ``Results`` message into a TranscriptResult; None when there is no text."""
    alternatives = (payload.get("channel") or {}).get("alternatives") or []
    if not alternatives:
        return None
    alternative = alternatives[0] or {}
    transcript = alternative.get("transcript") or ""
    if not transcript:
        return None
    words = alternative.get("words") or []
    start = float(words[0].get("start", 0.0)) if words else 0.0
    end = float(words[-1].get("end", 0.0)) if words else 0.0
    return TranscriptResult(
        session_id=session_id,
        speaker=speaker,
        content=transcript,
        timestamp_start=start,
        timestamp_end=end,
        is_final=bool(payload.get("is_final", False)),
    )


class DeepgramSession(StreamingSession):
    """One Deepgram live connection.

    ``open`` returns only once Deepgram has accepted the websocket upgrade,
    which is where it validates the API key and the stream parameters. Audio
    goes through a bounded queue drained by a sender task so ``feed`` never
    blocks the capture path.
    """

    def __init__(
        self,
        session_id: str,
        speaker_label: Optional[str],
        on_result: ResultCallback,
        config: Optional[StreamConfig] = None,
        url: str = DEEPGRAM_LISTEN_URL,
        connect_timeout: float = 10.0,
        send_queue_size: int = 200,
        keepalive_seconds: float = 5.0,
    ) -> None:
        super().__init__(session_id, speaker_label, on_result)
        self._config = config or StreamConfig()
        self._url = url
        self._connect_timeout = connect_timeout
        self._keepalive_seconds = keepalive_seconds
        self._send_queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=send_queue_size)
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._receiver: Optional[asyncio.Task] = None
        self._sender: Optional[asyncio.Task] = None
        self._ready = False
        self._closed = False
        self._dropped_frames = 0
        self._request_id: Optional[str] = None
        self._logger = logging.getLogger(f"mint.transcription.deepgram.{session_id}")

    @property
    def is_connected(self) -> bool:
        return self._ready and not self._closed and self._ws is not None and not self._ws.closed

    async def open(self, credential: str) -> None:
        if self._closed:
            raise SessionConnectionError("Session already closed")
        if self._ws is not None:
            raise SessionConnectionError("Session already open")
        if not credential:
            raise SessionConnectionError("Missing Deepgram API key")

        trace = aiohttp.TraceConfig()
        trace.on_request_end.append(self._on_upgrade_response)
        self._http = aiohttp.ClientSession(trace_configs=[trace])
        self._logger.info(
            "Connecting: model=%s sample_rate=%s speaker=%s",
            self._config.model,
            self._config.sample_rate,
            self.speaker_label,
        )
        try:
            ws = await asyncio.wait_for(
                self._http.ws_connect(
                    self._url,
                    params=self._config.to_query(),
                    headers={"Authorization": f"Token {credential}"},
                ),
                timeout=self._connect_timeout,
            )
        except aiohttp.WSServerHandshakeError as exc:
            await self._release_http()
            raise SessionConnectionError(f"Deepgram rejected the connection: {exc.status}") from exc
        except asyncio.TimeoutError as exc:
            await self._release_http()
            raise SessionConnectionError("Timed out waiting for Deepgram handshake") from exc
        except (aiohttp.ClientError, OSError) as exc:
            await self._release_http()
            raise SessionConnectionError("Failed to reach Deepgram") from exc

        if self._closed:
            await ws.close()
            await self._release_http()
            raise SessionConnectionError("Session closed during handshake")

        # Deepgram acknowledges an accepted stream with its request id.
        if not self._request_id:
            await ws.close()
            await self._release_http()
            raise SessionConnectionError("Deepgram did not acknowledge the session")

        self._ws = ws
        self._ready = True
        self._receiver = asyncio.create_task(self._receive_loop(ws), name=f"deepgram-recv-{self.session_id}")
        self._sender = asyncio.create_task(self._send_loop(ws), name=f"deepgram-send-{self.session_id}")
        self._logger.info("Connected: request_id=%s", self._request_id)

    @property
    def request_id(self) -> Optional[str]:
        return self._request_id

    async def _on_upgrade_response(self, session, trace_ctx, params) -> None:
        self._request_id = params.response.headers.get("dg-request-id")

    def feed(self, frame: bytes) -> None:
        if not self.is_connected:
            return
        try:
            self._send_queue.put_nowait(frame)
        except asyncio.QueueFull:
            self._dropped_frames += 1
            if self._dropped_frames % 100 == 1:
                self._logger.warning("Send queue full; dropped %d frames so far", self._dropped_frames)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ready = False
        ws = self._ws
        if ws is not None and not ws.closed:
            try:
                await ws.send_str(json.dumps({"type": "CloseStream"}))
            except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as exc:
                self._logger.debug("CloseStream not sent: %s", exc)
        tasks = [task for task in (self._sender, self._receiver) if task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if ws is not None:
            await ws.close()
        await self._release_http()
        self._ws = None
        self._sender = None
        self._receiver = None
        self._logger.info("Closed (dropped_frames=%d)", self._dropped_frames)

    async def _release_http(self) -> None:
        if self._http is not None:
            await self._http.close()
            self._http = None

    def _handle_message(self, raw: str) -> None:
        if self._closed:
            return
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            self._logger.warning("Non-JSON message from Deepgram: %s", raw[:200])
            return
        message_type = payload.get("type")
        if message_type == "Results":
            result = parse_results_message(payload, self.session_id, self.speaker_label)
            if result is not None:
                self._on_result(result)
        elif message_type == "Error" or "err_code" in payload:
            self._logger.error("Deepgram error: %s", payload)
        else:
            self._logger.debug("Deepgram message type=%s", message_type)

    async def _receive_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for message in ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    self._handle_message(message.data)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    self._logger.error("Websocket error: %s", ws.exception())
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.exception("Receive loop failed: %s", exc)
        finally:
            if not self._closed:
                self._ready = False
                self._logger.warning("Deepgram stream ended unexpectedly: close_code=%s", ws.close_code)

    async def _send_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            try:
                frame = await asyncio.wait_for(self._send_queue.get(), timeout=self._keepalive_seconds)
            except asyncio.TimeoutError:
                frame = None
            try:
                if frame is None:
                    await ws.send_str(json.dumps({"type": "KeepAlive"}))
                else:
                    await ws.send_bytes(frame)
            except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as exc:
                self._logger.warning("Send failed, stopping sender: %s", exc)
                return
