"""
Sandbox preview API router

Serves sandbox documents for generated code and runs headless renders that
report whether the code mounts.
"""
import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address

from config import settings
from logging_config import logger
from models.generation import RenderState
from services.sandbox_document import build_full_page_document, build_sandbox_document, load_runtime_bundle
from services.sandbox_renderer import PlaywrightSandbox, SandboxHost

router = APIRouter()
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


class PreviewRequest(BaseModel):
    """Code to preview"""
    code: str


class RenderResponse(BaseModel):
    """Result of a headless sandbox render"""
    state: RenderState
    error: Optional[str] = None


_render_host: Optional[SandboxHost] = None
_render_lock = asyncio.Lock()


def get_render_host() -> SandboxHost:
    """Shared headless host; renders are serialized through `_render_lock`"""
    global _render_host
    if _render_host is None:
        _render_host = SandboxHost(PlaywrightSandbox())
    return _render_host


async def close_render_host() -> None:
    global _render_host
    if _render_host is not None:
        await _render_host.close()
        _render_host = None


@router.post("/preview", response_class=HTMLResponse)
@limiter.limit(settings.PREVIEW_RATE_LIMIT)
async def preview(request: Request, data: PreviewRequest):
    """Sandbox document that reports ready/error to its embedding window"""
    runtime = await load_runtime_bundle()
    return HTMLResponse(build_sandbox_document(data.code, runtime))


@router.post("/preview/full", response_class=HTMLResponse)
@limiter.limit(settings.PREVIEW_RATE_LIMIT)
async def preview_full(request: Request, data: PreviewRequest):
    """Standalone page for opening the component in its own tab"""
    runtime = await load_runtime_bundle()
    return HTMLResponse(build_full_page_document(data.code, runtime))


@router.post("/preview/render", response_model=RenderResponse)
@limiter.limit(settings.PREVIEW_RATE_LIMIT)
async def preview_render(
    request: Request,
    data: PreviewRequest,
    host: SandboxHost = Depends(get_render_host)
):
    """Render the code headlessly and report the resulting state"""
    async with _render_lock:
        state = await host.render(data.code)
        error = host.error

    logger.info("Headless render finished", state=state.value, has_error=bool(error))
    return RenderResponse(state=state, error=error)
