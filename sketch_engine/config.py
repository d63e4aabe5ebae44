"""
Configuration settings for the Sketch-to-Code engine
"""
import os
import logging
from typing import Optional
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()

# Configure basic logger for config module
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings"""

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")  # "json" or "console"

    # Completion provider: "openai" (any OpenAI-compatible endpoint) or "anthropic"
    COMPLETION_PROVIDER: str = os.getenv("COMPLETION_PROVIDER", "openai")

    # API Keys
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")

    # Models
    GENERATION_MODEL: str = os.getenv("GENERATION_MODEL", "gpt-4o")
    ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")

    # Generation Settings (low temperature for consistent output, large ceiling for big layouts)
    MAX_TOKENS: int = int(os.getenv("MAX_TOKENS", "16384"))
    ANTHROPIC_MAX_TOKENS: int = int(os.getenv("ANTHROPIC_MAX_TOKENS", "8192"))
    TEMPERATURE: float = float(os.getenv("TEMPERATURE", "0.3"))
    TOP_P: float = float(os.getenv("TOP_P", "0.95"))
    IMAGE_DETAIL: str = os.getenv("IMAGE_DETAIL", "high")
    PROVIDER_TIMEOUT: float = float(os.getenv("PROVIDER_TIMEOUT", "180"))

    # Chat Settings
    MAX_HISTORY_MESSAGES: int = 20  # Maximum prior turns forwarded to the provider

    # Server-held sessions
    MAX_SESSIONS: int = int(os.getenv("MAX_SESSIONS", "100"))
    SESSION_TTL_SECONDS: float = float(os.getenv("SESSION_TTL_SECONDS", "3600"))

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    GENERATE_RATE_LIMIT: str = os.getenv("GENERATE_RATE_LIMIT", "10/minute")
    PREVIEW_RATE_LIMIT: str = os.getenv("PREVIEW_RATE_LIMIT", "30/minute")

    # Sandbox preview
    SANDBOX_READY_TIMEOUT: float = float(os.getenv("SANDBOX_READY_TIMEOUT", "3.0"))
    SANDBOX_INLINE_RUNTIMES: bool = os.getenv("SANDBOX_INLINE_RUNTIMES", "false").lower() == "true"
    SANDBOX_VIEWPORT_WIDTH: int = int(os.getenv("SANDBOX_VIEWPORT_WIDTH", "1280"))
    SANDBOX_VIEWPORT_HEIGHT: int = int(os.getenv("SANDBOX_VIEWPORT_HEIGHT", "800"))
    TAILWIND_RUNTIME_URL: str = os.getenv("TAILWIND_RUNTIME_URL", "https://cdn.tailwindcss.com")
    REACT_RUNTIME_URL: str = os.getenv(
        "REACT_RUNTIME_URL",
        "https://unpkg.com/react@18/umd/react.development.js"
    )
    REACT_DOM_RUNTIME_URL: str = os.getenv(
        "REACT_DOM_RUNTIME_URL",
        "https://unpkg.com/react-dom@18/umd/react-dom.development.js"
    )
    BABEL_RUNTIME_URL: str = os.getenv(
        "BABEL_RUNTIME_URL",
        "https://unpkg.com/@babel/standalone/babel.min.js"
    )
    ICON_RUNTIME_URL: str = os.getenv(
        "ICON_RUNTIME_URL",
        "https://unpkg.com/lucide@latest/dist/umd/lucide.min.js"
    )

    # Canvas capture
    CAPTURE_FORMAT: str = os.getenv("CAPTURE_FORMAT", "png")
    CAPTURE_SCALE: float = float(os.getenv("CAPTURE_SCALE", "2"))
    CAPTURE_PADDING: int = int(os.getenv("CAPTURE_PADDING", "20"))

    # Auth (generation is open unless REQUIRE_AUTH is set)
    REQUIRE_AUTH: bool = os.getenv("REQUIRE_AUTH", "false").lower() == "true"
    JWT_SECRET: str = os.getenv("JWT_SECRET", "")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Monitoring
    SENTRY_DSN: Optional[str] = os.getenv("SENTRY_DSN")
    SENTRY_ENVIRONMENT: str = os.getenv("SENTRY_ENVIRONMENT", "development")
    SENTRY_TRACES_SAMPLE_RATE: float = float(
        os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")
    )

    # CORS - comma-separated list of allowed origins
    CORS_ORIGINS: str = os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173"
    )

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()


def provider_configured() -> bool:
    """Whether the selected completion provider has a credential"""
    if settings.COMPLETION_PROVIDER == "anthropic":
        return bool(settings.ANTHROPIC_API_KEY)
    return bool(settings.OPENAI_API_KEY)


def validate_required_config():
    """Validate required configuration on startup"""
    errors = []

    if settings.COMPLETION_PROVIDER not in ("openai", "anthropic"):
        errors.append(f"Unknown COMPLETION_PROVIDER '{settings.COMPLETION_PROVIDER}'")
    elif not provider_configured():
        key_name = "ANTHROPIC_API_KEY" if settings.COMPLETION_PROVIDER == "anthropic" else "OPENAI_API_KEY"
        errors.append(f"{key_name} must be configured for provider '{settings.COMPLETION_PROVIDER}'")

    if settings.REQUIRE_AUTH and not settings.JWT_SECRET:
        errors.append("JWT_SECRET must be configured when REQUIRE_AUTH is enabled")

    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        if settings.ENVIRONMENT == "production":
            raise ValueError(f"Missing required configuration: {', '.join(errors)}")

    return len(errors) == 0
