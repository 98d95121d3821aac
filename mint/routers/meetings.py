import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from mint.services.meeting_store import MeetingNotFoundError, MeetingStore, PersistenceError
from mint.services.recording import RecordingController, StateError


class UpdateMeetingRequest(BaseModel):
    title: str = Field(..., min_length=1)


class UpdateTagsRequest(BaseModel):
    tag_ids: list[str]


class RegenerateNotesRequest(BaseModel):
    backend: Optional[str] = Field(None, description="openai, anthropic, gemini, ollama or lmstudio")


def create_meetings_router(meeting_store: MeetingStore, controller: RecordingController) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("mint.api.meetings")

    def _summary(meeting_id: str) -> dict:
        meeting = meeting_store.get_meeting(meeting_id).to_dict()
        meeting["tag_ids"] = meeting_store.get_tags(meeting_id)
        return meeting

    @router.get("/api/meetings")
    def list_meetings() -> list[dict]:
        meetings = []
        for metadata in meeting_store.list_meetings():
            item = metadata.to_dict()
            try:
                item["tag_ids"] = meeting_store.get_tags(metadata.id)
            except PersistenceError as exc:
                logger.warning("Tags unreadable for %s: %s", metadata.id, exc)
                item["tag_ids"] = []
            meetings.append(item)
        return meetings

    @router.get("/api/meetings/{meeting_id}")
    def get_meeting(meeting_id: str) -> dict:
        try:
            meeting = _summary(meeting_id)
            if controller.meeting_id == meeting_id and controller.state is not None:
                transcript = controller.state.merger.live_view()
            else:
                transcript = [entry.to_dict() for entry in meeting_store.read_transcript_entries(meeting_id)]
            notes = meeting_store.get_notes(meeting_id)
        except MeetingNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Meeting not found") from exc
        except PersistenceError as exc:
            logger.error("Meeting read failed: id=%s error=%s", meeting_id, exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        meeting["transcript"] = transcript
        meeting["notes"] = notes.to_dict() if notes else None
        return meeting

    @router.patch("/api/meetings/{meeting_id}")
    def update_meeting(meeting_id: str, payload: UpdateMeetingRequest) -> dict:
        logger.info("Meeting title update: id=%s", meeting_id)
        try:
            meeting_store.rename_meeting(meeting_id, payload.title.strip())
            return _summary(meeting_id)
        except MeetingNotFoundError as exc:
            logger.warning("Meeting not found for title update: id=%s", meeting_id)
            raise HTTPException(status_code=404, detail="Meeting not found") from exc

    @router.put("/api/meetings/{meeting_id}/tags")
    def update_tags(meeting_id: str, payload: UpdateTagsRequest) -> dict:
        try:
            tags = meeting_store.set_tags(meeting_id, payload.tag_ids)
        except MeetingNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Meeting not found") from exc
        return {"id": meeting_id, "tag_ids": tags}

    @router.delete("/api/meetings/{meeting_id}")
    def delete_meeting(meeting_id: str) -> dict:
        if controller.meeting_id == meeting_id:
            raise HTTPException(status_code=409, detail="Stop the recording before deleting it")
        try:
            meeting_store.delete_meeting(meeting_id)
        except MeetingNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Meeting not found") from exc
        except PersistenceError as exc:
            logger.error("Meeting delete failed: id=%s error=%s", meeting_id, exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"status": "ok"}

    @router.post("/api/meetings/{meeting_id}/notes/regenerate")
    async def regenerate_notes(meeting_id: str, payload: Optional[RegenerateNotesRequest] = None) -> dict:
        backend = payload.backend if payload else None
        try:
            return await controller.regenerate_notes(meeting_id, backend)
        except MeetingNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Meeting not found") from exc
        except StateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    return router
