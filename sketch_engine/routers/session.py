"""
Sketch session API router

Server-held preview/chat sessions for clients that cannot run the sandbox
themselves.
"""
import base64
import binascii
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from auth.dependencies import require_auth
from logging_config import logger
from models.generation import RenderState
from routers.generate import get_orchestrator
from services.canvas_capture import BytesImageSource
from services.errors import SessionBusyError
from services.generation_orchestrator import GenerationOrchestrator
from services.sandbox_renderer import PlaywrightSandbox, SandboxHost
from services.sketch_session import SketchSession, session_manager

router = APIRouter(dependencies=[Depends(require_auth)])


class CreateSessionRequest(BaseModel):
    """Options for a new session"""
    preview: bool = False


class SessionGenerateRequest(BaseModel):
    """Encoded sketch image (base64 or data URI)"""
    image: Optional[str] = None


class SessionIterateRequest(BaseModel):
    feedback: str


def _get_session(session_id: str) -> SketchSession:
    session = session_manager.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _decode_image(image: Optional[str]) -> Optional[bytes]:
    if not image or not image.strip():
        return None
    payload = image.split(",", 1)[1] if image.startswith("data:") else image
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Image must be base64 encoded")


def _result(session: SketchSession, success: bool) -> dict:
    return {"success": success, **session.snapshot()}


@router.post("/session")
async def create_session(
    data: Optional[CreateSessionRequest] = None,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator)
):
    """Start a session; `preview: true` attaches a headless sandbox"""
    sandbox = SandboxHost(PlaywrightSandbox()) if data and data.preview else None
    session = await session_manager.create(orchestrator, sandbox=sandbox)
    return session.snapshot()


@router.get("/session/{session_id}")
async def get_session(session_id: str):
    return _get_session(session_id).snapshot()


@router.post("/session/{session_id}/generate")
async def session_generate(session_id: str, data: SessionGenerateRequest):
    session = _get_session(session_id)
    source = BytesImageSource(_decode_image(data.image))

    try:
        success = await session.generate(source)
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=e.message)

    return _result(session, success)


@router.post("/session/{session_id}/iterate")
async def session_iterate(session_id: str, data: SessionIterateRequest):
    session = _get_session(session_id)

    try:
        success = await session.iterate(data.feedback)
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=e.message)

    return _result(session, success)


@router.post("/session/{session_id}/retry")
async def session_retry(session_id: str):
    """Re-render the current code in the session's sandbox"""
    session = _get_session(session_id)
    state = await session.retry_preview()
    return _result(session, state != RenderState.ERRORED)


@router.get("/session/{session_id}/preview", response_class=HTMLResponse)
async def session_preview(session_id: str):
    document = _get_session(session_id).document
    if document is None:
        raise HTTPException(status_code=404, detail="No code generated yet")
    return HTMLResponse(document)


@router.delete("/session/{session_id}")
async def delete_session(session_id: str):
    if not await session_manager.remove(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    logger.info("Session deleted via API", session_id=session_id)
    return {"success": True}
