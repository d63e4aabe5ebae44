"""
Request/response models for code generation and preview.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class HistoryMessage(BaseModel):
    """A prior conversation turn forwarded to the provider as context"""
    role: Literal["user", "assistant"]
    content: str


class GenerationRequest(BaseModel):
    """
    Either an initial request carrying an image, or an iteration carrying
    feedback plus the current code. Every field is optional here; the
    orchestrator enforces the shape so a missing field yields a structured 400.
    """
    image: Optional[str] = None
    feedback: Optional[str] = None
    current_code: Optional[str] = Field(None, alias="currentCode")
    history: Optional[List[HistoryMessage]] = None

    class Config:
        populate_by_name = True

    @property
    def is_iteration(self) -> bool:
        return bool(
            self.feedback and self.feedback.strip()
            and self.current_code and self.current_code.strip()
        )

    @property
    def has_image(self) -> bool:
        return bool(self.image and self.image.strip())


class TokenUsage(BaseModel):
    """Token accounting reported by the provider"""
    prompt_tokens: Optional[int] = Field(None, alias="promptTokens")
    completion_tokens: Optional[int] = Field(None, alias="completionTokens")
    total_tokens: Optional[int] = Field(None, alias="totalTokens")

    class Config:
        populate_by_name = True


class GenerationResponse(BaseModel):
    """Normalized envelope returned for every generation request"""
    success: bool
    code: Optional[str] = None
    error: Optional[str] = None
    details: Optional[str] = None
    usage: Optional[TokenUsage] = None

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class GenerationOutcome:
    """Orchestrator result: the envelope plus its HTTP classification"""
    response: GenerationResponse
    status_code: int = 200
    retryable: bool = False

    @property
    def success(self) -> bool:
        return self.response.success


class RenderSignal(BaseModel):
    """Lifecycle message posted by the sandboxed document to its host"""
    type: Literal["ready", "error"]
    message: Optional[str] = None


class RenderState(str, Enum):
    """Sandbox host state for the current render cycle"""
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERRORED = "errored"


class ViewTab(str, Enum):
    """Active view of the preview/chat surface"""
    PREVIEW = "preview"
    CODE = "code"
    CHAT = "chat"


class ConversationTurn(BaseModel):
    """Display-only chat turn"""
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
