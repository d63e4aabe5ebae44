"""
Generation Orchestrator - single entry point for image-to-code generation.

Validates the request, decides between initial generation and iteration,
builds the messages, calls the completion client, sanitizes the result and
converts every failure into a normalized response envelope.
"""
import time
from typing import Optional

from config import settings
from logging_config import logger
from models.generation import GenerationOutcome, GenerationRequest, GenerationResponse
from services.code_sanitizer import sanitize_code
from services.completion_client import CompletionClient, ModelConfig
from services.errors import (
    ConfigurationError,
    GenerationError,
    InvalidRequestError,
    ProviderAuthError,
    ProviderError,
    RateLimitError,
    ValidationError,
)
from services.generation_prompts import build_messages


MISSING_FIELD_DETAILS = 'Either "image" (base64 string) or "feedback" with "currentCode" is required'


class GenerationOrchestrator:
    """Stateless coordinator; the completion client is injected"""

    def __init__(
        self,
        client: CompletionClient,
        model_config: Optional[ModelConfig] = None,
        max_history: Optional[int] = None
    ):
        self.client = client
        self.model_config = model_config
        self.max_history = settings.MAX_HISTORY_MESSAGES if max_history is None else max_history

    @staticmethod
    def validate(request: GenerationRequest) -> bool:
        """Return True for an iteration, False for an initial generation."""
        if request.is_iteration:
            return True
        if request.has_image:
            return False
        raise ValidationError("Missing required field", MISSING_FIELD_DETAILS)

    def _history(self, request: GenerationRequest):
        if not request.history or self.max_history <= 0:
            return []
        turns = request.history[-self.max_history:]
        return [{"role": turn.role, "content": turn.content} for turn in turns]

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """
        Run one generation request.

        Args:
            request: Initial (image) or iteration (feedback + currentCode) request

        Returns:
            GenerationOutcome with the response envelope and its HTTP status
        """
        start_time = time.time()

        try:
            is_iteration = self.validate(request)
        except ValidationError as e:
            logger.warning("Rejected generation request", error=e.message)
            return self._failure(e, 400)

        mode = "iteration" if is_iteration else "generation"
        logger.info("Processing request", mode=mode, history_turns=len(request.history or []))

        messages = build_messages(
            is_iteration,
            image=request.image,
            current_code=request.current_code,
            feedback=request.feedback,
            history=self._history(request)
        )

        try:
            result = await self.client.complete(messages, self.model_config)
        except ProviderAuthError as e:
            return self._failure(e, 401)
        except RateLimitError as e:
            return self._failure(e, 429, retryable=True)
        except InvalidRequestError as e:
            return self._failure(e, 400)
        except ConfigurationError as e:
            return self._failure(e, 500)
        except ProviderError as e:
            return self._failure(e, 500, retryable=True)
        except Exception as e:
            logger.error("Generation failed unexpectedly", mode=mode, error=str(e), exc_info=True)
            return GenerationOutcome(
                response=GenerationResponse(
                    success=False,
                    error="Failed to generate UI",
                    details="An unexpected error occurred while generating code"
                ),
                status_code=500,
                retryable=True
            )

        code = sanitize_code(result.text)

        logger.info(
            "Generation succeeded",
            mode=mode,
            model=result.model,
            code_length=len(code),
            total_tokens=result.usage.total_tokens,
            execution_time=time.time() - start_time
        )

        return GenerationOutcome(
            response=GenerationResponse(success=True, code=code, usage=result.usage),
            status_code=200
        )

    @staticmethod
    def _failure(error: GenerationError, status_code: int, retryable: bool = False) -> GenerationOutcome:
        if status_code >= 500 or status_code == 401:
            logger.error(
                "Generation failed",
                error_type=type(error).__name__,
                error=error.message,
                status_code=status_code
            )
        return GenerationOutcome(
            response=GenerationResponse(success=False, error=error.message, details=error.details),
            status_code=status_code,
            retryable=retryable
        )
