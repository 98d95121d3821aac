import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from mint.context import AppContext
from mint.routers.meetings import create_meetings_router
from mint.routers.recording import create_recording_router
from mint.routers.settings import create_settings_router
from mint.services.live_feed import LiveFeed
from mint.services.logging_setup import configure_logging, enable_crash_logging
from mint.services.meeting_store import MeetingStore
from mint.services.notes import NotesService
from mint.services.recording import (
    ProducerFactory,
    RecordingController,
    SessionFactory,
    default_producer_factory,
    default_session_factory,
    load_recording_settings,
)
from mint.services.transcript_merge import TranscriptBuffers

VERSION = "0.1.0"


def build_context(cwd: Optional[str] = None) -> AppContext:
    """Resolve data dir and storage path from ``<cwd>/data/config.json``."""
    logger = logging.getLogger("mint.boot")
    cwd = cwd or os.getcwd()
    default_data_dir = os.path.join(cwd, "data")
    os.makedirs(default_data_dir, exist_ok=True)
    # Config always lives in the app-level data dir regardless of custom data_dir
    config_path = os.path.join(default_data_dir, "config.json")
    config: dict = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as config_file:
                config = json.load(config_file)
            logger.info("Boot: config keys=%s", sorted(config.keys()))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Boot: config unreadable at %s: %s", config_path, exc)
            config = {}

    custom_data_dir = config.get("data_dir", "")
    if custom_data_dir and os.path.isdir(custom_data_dir) and os.access(custom_data_dir, os.W_OK):
        data_dir = custom_data_dir
        logger.info("Boot: using custom data_dir=%s", data_dir)
    else:
        data_dir = default_data_dir
        if custom_data_dir:
            logger.warning(
                "Boot: custom data_dir=%s is invalid or not writable, falling back to %s",
                custom_data_dir, data_dir,
            )

    return AppContext(
        cwd=cwd,
        data_dir=data_dir,
        config_path=config_path,
        storage_path=config.get("storage_path") or None,
    )


def create_app(
    ctx: Optional[AppContext] = None,
    session_factory: SessionFactory = default_session_factory,
    producer_factory: ProducerFactory = default_producer_factory,
    notes_service=None,
) -> FastAPI:
    ctx = ctx or build_context()
    log_path = configure_logging(ctx.logs_dir)
    logger = logging.getLogger("mint.boot")
    logger.info("Boot: starting create_app log=%s", log_path)
    enable_crash_logging(ctx.logs_dir)
    ctx.ensure_dirs()
    logger.info("Boot: AppContext ready data_dir=%s storage_path=%s", ctx.data_dir, ctx.storage_path)

    buffers = TranscriptBuffers()
    meeting_store = MeetingStore(lambda: ctx.storage_path, buffers)
    feed = LiveFeed()
    notes_service = notes_service or NotesService(ctx)
    controller = RecordingController(
        meeting_store,
        buffers,
        notes_service,
        feed,
        session_factory=session_factory,
        producer_factory=producer_factory,
        settings=lambda: load_recording_settings(ctx),
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await controller.shutdown()
        logger.info("Shutdown: recording controller stopped")

    app = FastAPI(title="Mint", version=VERSION, lifespan=lifespan)
    app.state.ctx = ctx
    app.state.meeting_store = meeting_store
    app.state.controller = controller
    app.state.feed = feed

    app.include_router(create_recording_router(controller, feed, ctx))
    logger.info("Boot: recording router mounted")
    app.include_router(create_meetings_router(meeting_store, controller))
    logger.info("Boot: meetings router mounted")
    app.include_router(create_settings_router(ctx))
    logger.info("Boot: settings router mounted")

    @app.get("/api/health")
    def health() -> dict:
        return {"status": "ok", "version": VERSION}

    logger.info("Boot: create_app complete")
    return app
