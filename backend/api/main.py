from __future__ import annotations

"""
HTTP surface for the audition portal.

Design intent:
- Keep routes thin: validate the request, call the portal facade, shape JSON.
- Translate portal errors into status codes in one place.
- Never wait on background evaluation from a request handler.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from backend.internal_core import load_config
from backend.internal_core.contracts import PortalStatus, Recording, RecordingStatus, User
from backend.internal_core.errors import NotFoundError, PortalClosedError, PortalError, ValidationError
from backend.portal.service import AuditionPortal, build_portal


class LoginRequest(BaseModel):
    email: str = Field(default="", max_length=320)


class LoginResponse(BaseModel):
    user: User


def media_url(media_reference: str) -> str:
    return f"/uploads/{Path(media_reference).name}"


class RecordingView(BaseModel):
    """Wire shape of a recording; media is addressed by its `/uploads/` URL."""

    id: str
    email: str
    audio_url: str
    status: RecordingStatus
    ai_score: Optional[int] = None
    ai_result: Optional[Dict[str, Any]] = None
    created_at: datetime

    @classmethod
    def from_recording(cls, recording: Recording) -> "RecordingView":
        return cls(
            id=recording.id,
            email=recording.identity,
            audio_url=media_url(recording.media_reference),
            status=recording.status,
            ai_score=recording.score,
            ai_result=recording.result,
            created_at=recording.created_at,
        )


def _views(recordings: list[Recording]) -> list[RecordingView]:
    return [RecordingView.from_recording(r) for r in recordings]


class RecordingResponse(BaseModel):
    recording: RecordingView


class RecordingListResponse(BaseModel):
    recordings: list[RecordingView] = Field(default_factory=list)


class LeaderboardResponse(BaseModel):
    leaderboard: list[RecordingView] = Field(default_factory=list)


class UserStatusResponse(BaseModel):
    recording: Optional[RecordingView] = None
    has_submitted: bool = False


class RestartRequest(BaseModel):
    mode: str = Field(min_length=1, max_length=16)


class MessageResponse(BaseModel):
    message: str


app = FastAPI(title="audition portal backend service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_portal() -> AuditionPortal:
    existing = getattr(app.state, "portal", None)
    if isinstance(existing, AuditionPortal):
        return existing
    cfg = load_config()
    logging.getLogger("backend").setLevel(cfg.AUDITION_LOG_LEVEL.upper())
    created = build_portal(cfg)
    setattr(app.state, "portal", created)
    setattr(app.state, "max_upload_bytes", cfg.AUDITION_MAX_UPLOAD_BYTES)
    return created


def _get_max_upload_bytes() -> int:
    value = getattr(app.state, "max_upload_bytes", None)
    if isinstance(value, int) and value > 0:
        return value
    return load_config().AUDITION_MAX_UPLOAD_BYTES


def _http_error(exc: PortalError) -> HTTPException:
    if isinstance(exc, PortalClosedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/auth/login", response_model=LoginResponse)
async def login(payload: LoginRequest) -> LoginResponse:
    try:
        user = _get_portal().login(payload.email)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return LoginResponse(user=user)


@app.post("/api/recordings", response_model=RecordingResponse)
async def submit_recording(
    email: str = Form(default=""),
    audio: Optional[UploadFile] = File(default=None),
) -> RecordingResponse:
    if not email.strip() or audio is None:
        raise HTTPException(status_code=400, detail="Email and audio file are required")

    content_type = str(audio.content_type or "").lower()
    if not content_type.startswith("audio/"):
        raise HTTPException(status_code=400, detail="Only audio files are allowed")

    data = await audio.read()
    max_bytes = _get_max_upload_bytes()
    if len(data) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Uploaded file exceeds {max_bytes // (1024 * 1024)}MB limit.",
        )

    portal = _get_portal()
    try:
        recording = await run_in_threadpool(portal.submit, email, data, audio.filename)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return RecordingResponse(recording=RecordingView.from_recording(recording))


@app.get("/api/recordings", response_model=RecordingListResponse)
async def list_recordings() -> RecordingListResponse:
    return RecordingListResponse(recordings=_views(_get_portal().list_all()))


@app.get("/api/recordings/{recording_id}", response_model=RecordingResponse)
async def get_recording(recording_id: str) -> RecordingResponse:
    try:
        recording = _get_portal().get(recording_id.strip())
    except PortalError as exc:
        raise _http_error(exc) from exc
    return RecordingResponse(recording=RecordingView.from_recording(recording))


@app.get("/api/status", response_model=UserStatusResponse)
async def user_status(email: str = Query(default="")) -> UserStatusResponse:
    try:
        recording = _get_portal().status_for(email)
    except PortalError as exc:
        raise _http_error(exc) from exc
    if recording is None:
        return UserStatusResponse()
    return UserStatusResponse(recording=RecordingView.from_recording(recording), has_submitted=True)


@app.get("/api/leaderboard", response_model=LeaderboardResponse)
async def leaderboard() -> LeaderboardResponse:
    return LeaderboardResponse(leaderboard=_views(_get_portal().leaderboard()))


@app.get("/api/portal-status", response_model=PortalStatus)
async def portal_status() -> PortalStatus:
    return _get_portal().get_portal_status()


@app.post("/api/close_audition", response_model=MessageResponse)
async def close_audition() -> MessageResponse:
    await run_in_threadpool(_get_portal().close_portal)
    return MessageResponse(message="Audition portal closed and AI scoring completed")


@app.post("/api/restart_audition", response_model=MessageResponse)
async def restart_audition(payload: RestartRequest) -> MessageResponse:
    try:
        await run_in_threadpool(_get_portal().restart_portal, payload.mode)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return MessageResponse(message=f"Audition portal restarted ({payload.mode})")


@app.get("/uploads/{name}")
async def get_media_file(name: str) -> FileResponse:
    media_dir = _get_portal().media_dir.resolve()
    safe_name = Path(name).name
    if not safe_name or safe_name != name:
        raise HTTPException(status_code=400, detail="Invalid media name.")
    path = (media_dir / safe_name).resolve()
    if path.parent != media_dir or not path.is_file():
        raise HTTPException(status_code=404, detail=f"Media not found: {safe_name}")
    return FileResponse(str(path))
