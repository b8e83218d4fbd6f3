import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from vibe_rooms import config
from vibe_rooms.backend import Backend
from vibe_rooms.errors import (
    CodeGenPlatformError,
    FinishWorkflowError,
    InvalidInputError,
    OperationInProgressError,
    ReasoningServiceError,
    RoomNotFoundError,
    UnknownPatchOpError,
    VibeRoomsError,
)

logger = logging.getLogger("vibe_rooms")

app = FastAPI()

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_backend: Optional[Backend] = None


def get_backend() -> Backend:
    global _backend
    if _backend is None:
        _backend = Backend(schedule_on_submit=config.SCHEDULE_ON_SUBMIT)
    return _backend


ERROR_STATUS = {
    InvalidInputError: 400,
    RoomNotFoundError: 404,
    OperationInProgressError: 409,
    FinishWorkflowError: 409,
    ReasoningServiceError: 500,
    CodeGenPlatformError: 500,
    UnknownPatchOpError: 500,
}


@app.exception_handler(VibeRoomsError)
async def vibe_rooms_error_handler(request: Request, exc: VibeRoomsError):
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"error": type(exc).__name__, "message": str(exc)})


class CreateRoom(BaseModel):
    name: str = ""


class JoinRoom(BaseModel):
    display_name: str


class SubmitPrompt(BaseModel):
    participant_id: str
    kind: str = "text"
    text: Optional[str] = None
    payload_url: Optional[str] = None


class SubmitCommand(BaseModel):
    participant_id: Optional[str] = None
    content: str


class ParticipantRef(BaseModel):
    participant_id: str


@app.post("/rooms")
async def create_room(body: CreateRoom, backend: Backend = Depends(get_backend)):
    room = await backend.create_room(body.name)
    return room.to_json_dict()


@app.post("/rooms/{room_id}/join")
async def join_room(room_id: str, body: JoinRoom, backend: Backend = Depends(get_backend)):
    participant = await backend.join_room(room_id, body.display_name)
    return participant.to_json_dict()


@app.post("/rooms/{room_id}/prompts")
async def submit_prompt(room_id: str, body: SubmitPrompt, backend: Backend = Depends(get_backend)):
    result = await backend.submit_prompt(
        room_id, body.participant_id, kind=body.kind, text=body.text, payload_url=body.payload_url
    )
    return {"event": result["event"].to_json_dict(), "finishIntent": result["finishIntent"]}


@app.post("/rooms/{room_id}/tick")
async def tick(room_id: str, backend: Backend = Depends(get_backend)):
    result = await backend.run_cycle(room_id)
    return {"analysisId": result.analysis_id, "specId": result.spec_id, "patchId": result.patch_id}


@app.post("/rooms/{room_id}/commands")
async def submit_command(room_id: str, body: SubmitCommand, backend: Backend = Depends(get_backend)):
    command = await backend.submit_command(room_id, body.participant_id, body.content)
    return command.to_json_dict()


@app.post("/rooms/{room_id}/command-tick")
async def command_tick(room_id: str, backend: Backend = Depends(get_backend)):
    result = await backend.command_tick(room_id)
    return {
        "skipped": result.skipped,
        "message": result.message,
        "synthesized": result.synthesized.to_json_dict() if result.synthesized else None,
        "previewUrl": result.preview_url,
        "projectId": result.project_id,
    }


@app.post("/rooms/{room_id}/finish")
async def request_finish(room_id: str, body: ParticipantRef, backend: Backend = Depends(get_backend)):
    request = await backend.request_finish(room_id, body.participant_id)
    return request.to_json_dict()


@app.post("/rooms/{room_id}/finish/approve")
async def approve_finish(room_id: str, body: ParticipantRef, backend: Backend = Depends(get_backend)):
    request = await backend.approve_finish(room_id, body.participant_id)
    return request.to_json_dict()


@app.post("/rooms/{room_id}/finish/{request_id}/reject")
async def reject_finish(room_id: str, request_id: str, backend: Backend = Depends(get_backend)):
    request = await backend.reject_finish(room_id, request_id)
    return request.to_json_dict()


@app.get("/rooms/{room_id}/finish")
async def finish_status(room_id: str, backend: Backend = Depends(get_backend)):
    request = await backend.finish_status(room_id)
    return request.to_json_dict() if request else None


@app.get("/rooms/{room_id}/status")
async def room_status(room_id: str, backend: Backend = Depends(get_backend)):
    return await backend.room_status(room_id)


@app.get("/rooms/{room_id}/files")
async def list_files(room_id: str, backend: Backend = Depends(get_backend)):
    return await backend.list_files(room_id)


@app.get("/rooms/{room_id}/zip")
async def room_zip(room_id: str, backend: Backend = Depends(get_backend)):
    data = await backend.build_archive(room_id)
    return Response(
        content=data,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="vibe-room-{room_id}.zip"'},
    )


@app.get("/rooms/{room_id}/download")
async def download_version(room_id: str, backend: Backend = Depends(get_backend)):
    data = await backend.download_version_archive(room_id)
    return Response(
        content=data,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="vibe-room-{room_id}-version.zip"'},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
