"""
Main FastAPI application for the Sketch-to-Code Engine
"""
from contextlib import asynccontextmanager
from datetime import datetime

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from auth.dependencies import AuthError
from config import provider_configured, settings, validate_required_config
from logging_config import logger
from services.completion_client import close_completion_client
from services.sandbox_renderer import shared_browser
from services.sketch_session import session_manager

# Import routers
from routers import generate, preview, session
from routers.generate import limiter
from routers.preview import close_render_host

SERVICE_NAME = "sketch2code-ai"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting Sketch-to-Code Engine", environment=settings.ENVIRONMENT)

    # Validate required configuration
    validate_required_config()

    # Initialize Sentry if DSN provided
    if settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.SENTRY_ENVIRONMENT,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[FastApiIntegration()],
        )
        logger.info("Sentry initialized")

    if not provider_configured():
        logger.error(
            "Completion provider not configured!",
            provider=settings.COMPLETION_PROVIDER
        )

    logger.info(
        "Sketch-to-Code Engine started",
        provider=settings.COMPLETION_PROVIDER,
        model=settings.ANTHROPIC_MODEL if settings.COMPLETION_PROVIDER == "anthropic" else settings.GENERATION_MODEL,
        require_auth=settings.REQUIRE_AUTH
    )

    yield

    logger.info("Shutting down Sketch-to-Code Engine")
    await session_manager.close_all()
    await close_render_host()
    await shared_browser.close()
    await close_completion_client()


# Create FastAPI app
app = FastAPI(
    title="Sketch-to-Code Engine",
    description="AI-powered wireframe to React code generation",
    version=VERSION,
    lifespan=lifespan
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware - Configure from environment
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in settings.CORS_ORIGINS.split(",")
    if origin.strip()
]

# Development allows all origins; production only the configured ones
if settings.ENVIRONMENT == "development" or settings.DEBUG:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,  # Cannot use credentials with wildcard origins
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": "Sketch2Code API",
        "version": VERSION,
        "description": "AI-powered wireframe to React code generation",
        "endpoints": {
            "health": "GET /health",
            "generate": "POST /generate",
            "preview": "POST /preview"
        }
    }


@app.get("/health")
@app.get("/api/health")
async def health_check():
    """Liveness plus provider configuration"""
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "timestamp": datetime.utcnow().isoformat(),
        "provider": settings.COMPLETION_PROVIDER,
        "openai": {"configured": bool(settings.OPENAI_API_KEY)},
        "anthropic": {"configured": bool(settings.ANTHROPIC_API_KEY)}
    }


@app.get("/readiness")
async def readiness_check():
    """Kubernetes readiness probe"""
    if provider_configured():
        return {"status": "ready"}
    return JSONResponse(
        status_code=503,
        content={"status": "not_ready", "provider": settings.COMPLETION_PROVIDER}
    )


# Include routers (generation is served at both / and /api)
app.include_router(generate.router, tags=["Generation"])
app.include_router(generate.router, prefix="/api", tags=["Generation"])
app.include_router(preview.router, tags=["Preview"])
app.include_router(session.router, tags=["Sessions"])


# Error handlers
@app.exception_handler(AuthError)
async def auth_exception_handler(request: Request, exc: AuthError):
    logger.warning("Rejected credentials", path=request.url.path, error=exc.error)
    return JSONResponse(status_code=401, content=exc.to_json())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies get the same envelope as other generation failures"""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    details = f"{location}: {first.get('msg')}" if location else first.get("msg", "Malformed request")

    logger.warning("Invalid request body", path=request.url.path, details=details)
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request body", "details": details}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler with Sentry integration"""
    logger.error(
        "Unhandled exception",
        error=str(exc),
        path=request.url.path,
        exc_info=True
    )

    if settings.SENTRY_DSN:
        sentry_sdk.capture_exception(exc)

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "details": str(exc) if settings.ENVIRONMENT == "development" else None
        }
    )


def run():
    """Start the API server on port 3001"""
    import uvicorn
    # Only enable reload in development; reload needs an import string
    reload_enabled = settings.ENVIRONMENT == "development" or settings.DEBUG
    uvicorn.run("main:app" if reload_enabled else app, host="0.0.0.0", port=3001, reload=reload_enabled)


if __name__ == "__main__":
    run()
