import logging
import os
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from mint.context import AppContext
from mint.services.notes import DEFAULT_MODELS, NotesBackend


class StorageSettingsRequest(BaseModel):
    storage_path: str = Field(..., min_length=1)


class ModelSettingsRequest(BaseModel):
    selected_backend: str = Field(..., min_length=1)
    model: str = ""


class ProviderSettingsRequest(BaseModel):
    api_key: Optional[str] = None
    base_url: Optional[str] = None


class TranscriptionSettingsRequest(BaseModel):
    api_key: Optional[str] = None
    model: Optional[str] = None
    language: Optional[str] = None
    mic_label: Optional[str] = None
    system_label: Optional[str] = None
    connect_timeout: Optional[float] = Field(None, gt=0)


def _mask(secret: str) -> str:
    if not secret:
        return ""
    return f"***{secret[-4:]}" if len(secret) > 8 else "***"


def create_settings_router(ctx: AppContext) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("mint.api.settings")

    @router.get("/api/settings/storage")
    def get_storage_settings() -> dict:
        return {"storage_path": ctx.storage_path, "data_dir": ctx.data_dir}

    @router.post("/api/settings/storage")
    def set_storage_settings(payload: StorageSettingsRequest) -> dict:
        path = os.path.abspath(os.path.expanduser(payload.storage_path.strip()))
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as exc:
            raise HTTPException(status_code=400, detail=f"Cannot create {path}: {exc}") from exc
        if not os.access(path, os.W_OK):
            raise HTTPException(status_code=400, detail=f"Storage path is not writable: {path}")
        data = ctx.read_config()
        data["storage_path"] = path
        ctx.write_config(data)
        ctx.storage_path = path
        logger.info("Storage path changed: %s", path)
        return {"status": "ok", "storage_path": path}

    @router.get("/api/settings/models")
    def get_model_settings() -> dict:
        models = ctx.read_config().get("models", {})
        return {
            "selected_backend": models.get("selected_backend", NotesBackend.OPENAI.value),
            "model": models.get("model", ""),
            "backends": [backend.value for backend in NotesBackend],
            "defaults": {backend.value: model for backend, model in DEFAULT_MODELS.items()},
        }

    @router.post("/api/settings/models")
    def update_model_settings(payload: ModelSettingsRequest) -> dict:
        backend = payload.selected_backend.strip().lower()
        if backend not in {item.value for item in NotesBackend}:
            raise HTTPException(status_code=400, detail=f"Unknown notes backend: {payload.selected_backend}")
        ctx.update_config("models", {"selected_backend": backend, "model": payload.model.strip()})
        return {"status": "ok"}

    @router.get("/api/settings/providers")
    def get_provider_settings() -> dict:
        providers = ctx.read_config().get("providers", {})
        return {
            name: {"api_key": _mask(values.get("api_key", "")), "base_url": values.get("base_url", "")}
            for name, values in providers.items()
            if isinstance(values, dict)
        }

    @router.post("/api/settings/providers/{backend}")
    def update_provider_settings(backend: str, payload: ProviderSettingsRequest) -> dict:
        if backend not in {item.value for item in NotesBackend}:
            raise HTTPException(status_code=404, detail=f"Unknown notes backend: {backend}")
        data = ctx.read_config()
        providers = data.get("providers", {})
        current = dict(providers.get(backend, {}))
        current.update(payload.model_dump(exclude_none=True))
        providers[backend] = current
        data["providers"] = providers
        ctx.write_config(data)
        return {"status": "ok"}

    @router.get("/api/settings/transcription")
    def get_transcription_settings() -> dict:
        transcription = dict(ctx.read_config().get("transcription", {}))
        transcription["api_key"] = _mask(transcription.get("api_key", ""))
        return transcription

    @router.post("/api/settings/transcription")
    def update_transcription_settings(payload: TranscriptionSettingsRequest) -> dict:
        ctx.update_config("transcription", payload.model_dump(exclude_none=True))
        return {"status": "ok"}

    return router
