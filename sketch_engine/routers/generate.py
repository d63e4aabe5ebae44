"""
Code generation API router
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from auth.dependencies import require_auth
from config import settings
from logging_config import logger
from models.generation import GenerationRequest
from services.completion_client import get_completion_client
from services.generation_orchestrator import GenerationOrchestrator

router = APIRouter()
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


def get_orchestrator() -> GenerationOrchestrator:
    """Orchestrator bound to the process-wide completion client"""
    return GenerationOrchestrator(get_completion_client())


@router.post("/generate")
@limiter.limit(settings.GENERATE_RATE_LIMIT)
async def generate(
    request: Request,
    data: GenerationRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    claims: Optional[dict] = Depends(require_auth)
):
    """
    Generate React + Tailwind code from a sketch, or modify existing code.

    Body (camelCase):
    - image: base64 image (or data URI) for an initial generation
    - feedback + currentCode: for an iteration
    - history: optional prior turns

    Every outcome is a `{success, code?, error?, details?, usage?}` envelope;
    the HTTP status mirrors the failure class (400, 401, 429, 500).
    """
    logger.info(
        "Generate request received",
        has_image=data.has_image,
        is_iteration=data.is_iteration,
        subject=claims.get("sub") if claims else None
    )

    outcome = await orchestrator.generate(data)
    return JSONResponse(status_code=outcome.status_code, content=outcome.response.to_json())
