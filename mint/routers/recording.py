import json
import logging
import time
from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from mint.context import AppContext
from mint.services.audio_capture import DeviceError, list_devices
from mint.services.live_feed import LiveFeed
from mint.services.meeting_store import PersistenceError
from mint.services.recording import RecordingController, StateError
from mint.services.transcription import SessionConnectionError


class StartRecordingRequest(BaseModel):
    title: Optional[str] = Field(None, description="Meeting title; defaults to 'Untitled Meeting'")


class AudioConfigRequest(BaseModel):
    device_index: Optional[int] = Field(
        None, description="Microphone device index from /api/audio/devices"
    )
    system_device_index: Optional[int] = Field(
        None, description="System-audio loopback device index; auto-detected when unset"
    )
    samplerate: Optional[int] = Field(None, description="Target sample rate in Hz")
    frame_ms: Optional[int] = Field(None, description="Frame duration in milliseconds")
    system_audio: Optional[bool] = Field(None, description="Capture system audio alongside the mic")


def create_recording_router(
    controller: RecordingController,
    feed: LiveFeed,
    ctx: AppContext,
) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("mint.api.recording")

    @router.get("/api/audio/devices")
    def audio_devices() -> list[dict]:
        try:
            return list_devices()
        except Exception as exc:
            logger.exception("Device listing failed: %s", exc)
            raise HTTPException(status_code=500, detail="Failed to list audio devices") from exc

    @router.get("/api/recording/status")
    def recording_status() -> dict:
        return controller.status()

    @router.post("/api/recording/start")
    async def start_recording(payload: StartRecordingRequest) -> dict:
        start_time = time.perf_counter()
        logger.debug("start_recording received: %s", payload.model_dump())
        try:
            result = await controller.start(payload.title)
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info("start_recording completed in %.2f ms", duration_ms)
            return result
        except (StateError, DeviceError, SessionConnectionError, PersistenceError) as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.warning("start_recording failed in %.2f ms: %s", duration_ms, exc)
            return {"status": "error", "detail": str(exc)}
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception("start_recording error in %.2f ms: %s", duration_ms, exc)
            return {"status": "error", "detail": "Internal Server Error"}

    @router.post("/api/recording/stop")
    async def stop_recording() -> dict:
        start_time = time.perf_counter()
        logger.debug("stop_recording received")
        try:
            result = await controller.stop()
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception("stop_recording error in %.2f ms: %s", duration_ms, exc)
            raise HTTPException(status_code=500, detail="Internal Server Error") from exc
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info("stop_recording completed in %.2f ms: %s", duration_ms, result)
        return result

    @router.get("/api/recording/events")
    async def recording_events() -> StreamingResponse:
        logger.info("Recording SSE connected")

        async def event_stream():
            async for event in feed.subscribe(heartbeat_seconds=5.0):
                yield f"data: {json.dumps(event)}\n\n"

        return StreamingResponse(event_stream(), media_type="text/event-stream")

    @router.get("/api/settings/audio")
    def get_audio_settings() -> dict:
        stored = ctx.read_config().get("audio", {})
        return {
            "device_index": stored.get("device_index"),
            "system_device_index": stored.get("system_device_index"),
            "samplerate": stored.get("samplerate", 16000),
            "frame_ms": stored.get("frame_ms", 100),
            "system_audio": stored.get("system_audio", True),
        }

    @router.post("/api/settings/audio")
    def set_audio_settings(payload: AudioConfigRequest) -> dict:
        logger.debug("set_audio_settings received: %s", payload.model_dump())
        updates = payload.model_dump(exclude_none=True)
        ctx.update_config("audio", updates)
        return {"status": "ok"}

    return router
