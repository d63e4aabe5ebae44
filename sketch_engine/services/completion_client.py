"""
Chat-completion clients for code generation.

Wraps the provider call, fixes the generation parameters and classifies
failures into the engine's error taxonomy.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import anthropic
import httpx

from config import settings
from logging_config import logger
from models.generation import TokenUsage
from services.errors import (
    ConfigurationError,
    InvalidRequestError,
    ProviderAuthError,
    ProviderError,
    RateLimitError,
)
from services.llm_response_handler import LLMResponseHandler


DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.+)$", re.DOTALL)


@dataclass
class ModelConfig:
    """Generation parameters sent with every completion call"""
    model: str
    max_tokens: int
    temperature: float
    top_p: float

    @classmethod
    def from_settings(cls) -> "ModelConfig":
        if settings.COMPLETION_PROVIDER == "anthropic":
            return cls(
                model=settings.ANTHROPIC_MODEL,
                max_tokens=settings.ANTHROPIC_MAX_TOKENS,
                temperature=settings.TEMPERATURE,
                top_p=settings.TOP_P,
            )
        return cls(
            model=settings.GENERATION_MODEL,
            max_tokens=settings.MAX_TOKENS,
            temperature=settings.TEMPERATURE,
            top_p=settings.TOP_P,
        )


@dataclass
class CompletionResult:
    """Text and token usage of a successful completion"""
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: Optional[str] = None


class CompletionClient:
    """Base class: `complete(messages, model_config) -> CompletionResult`"""

    provider = "base"

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        model_config: Optional[ModelConfig] = None
    ) -> CompletionResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class OpenAICompletionClient(CompletionClient):
    """Client for OpenAI-compatible `/chat/completions` endpoints (OpenAI, OpenRouter)"""

    provider = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = settings.OPENAI_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PROVIDER_TIMEOUT
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    def _get_http(self) -> httpx.AsyncClient:
        """Lazily create the HTTP handle (fails fast when no credential is present)"""
        if not self.api_key:
            raise ConfigurationError(
                "Service not configured",
                "OPENAI_API_KEY is not configured. Please add it to your .env file."
            )

        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "X-Title": "Sketch to Code"
                }
            )
        return self._http

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        model_config: Optional[ModelConfig] = None
    ) -> CompletionResult:
        config = model_config or ModelConfig.from_settings()
        client = self._get_http()

        logger.info("Calling completion provider", provider=self.provider, model=config.model)

        try:
            response = await client.post(
                "/chat/completions",
                json={
                    "model": config.model,
                    "messages": messages,
                    "max_tokens": config.max_tokens,
                    "temperature": config.temperature,
                    "top_p": config.top_p
                }
            )
        except httpx.TimeoutException:
            raise ProviderError("Provider API error", "The completion provider timed out")
        except httpx.RequestError as e:
            raise ProviderError("Provider API error", f"Failed to reach completion provider: {type(e).__name__}")

        if response.status_code != 200:
            raise self._classify_status(response)

        try:
            payload = response.json()
        except ValueError:
            raise ProviderError("Provider API error", "Malformed response from completion provider")

        choices = payload.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content")
        text = LLMResponseHandler.handle_response(content)

        if not text:
            raise ProviderError("Provider API error", "No content received from completion provider")

        usage = payload.get("usage") or {}
        return CompletionResult(
            text=text,
            usage=TokenUsage(
                prompt_tokens=usage.get("prompt_tokens"),
                completion_tokens=usage.get("completion_tokens"),
                total_tokens=usage.get("total_tokens")
            ),
            model=payload.get("model", config.model)
        )

    def _classify_status(self, response: httpx.Response) -> Exception:
        """Map a non-200 provider response onto the error taxonomy"""
        message = self._error_message(response)
        status = response.status_code

        logger.error("Completion provider returned an error", status_code=status, error=message)

        if status in (401, 403):
            return ProviderAuthError("Invalid API key", "Please check your API key configuration")
        if status == 429:
            return RateLimitError("Rate limit exceeded", "Too many requests. Please try again later.")
        if status in (400, 413, 422):
            return InvalidRequestError("Invalid request", message)
        return ProviderError("Provider API error", message, status_code=status)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            error = response.json().get("error")
        except ValueError:
            error = None

        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        return f"Provider responded with HTTP {response.status_code}"

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None


class AnthropicCompletionClient(CompletionClient):
    """Client for Anthropic's Messages API, speaking the same message format"""

    provider = "anthropic"

    def __init__(self, api_key: Optional[str] = None, sdk_client: Optional[Any] = None):
        self.api_key = settings.ANTHROPIC_API_KEY if api_key is None else api_key
        self._client = sdk_client

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError(
                    "Service not configured",
                    "ANTHROPIC_API_KEY is not configured. Please add it to your .env file."
                )
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                timeout=settings.PROVIDER_TIMEOUT
            )
        return self._client

    @staticmethod
    def convert_messages(messages: List[Dict[str, Any]]):
        """Split out system turns and convert image_url parts to base64 image blocks"""
        system_parts = []
        converted = []

        for message in messages:
            if message["role"] == "system":
                system_parts.append(LLMResponseHandler.extract_text(message["content"]))
                continue

            content = message["content"]
            if isinstance(content, list):
                blocks = []
                for part in content:
                    if part.get("type") == "image_url":
                        match = DATA_URI_PATTERN.match(part["image_url"]["url"])
                        if not match:
                            raise InvalidRequestError("Invalid request", "Image must be a base64 data URI")
                        blocks.append({
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": match.group("mime"),
                                "data": match.group("data")
                            }
                        })
                    else:
                        blocks.append({"type": "text", "text": part.get("text", "")})
                content = blocks

            converted.append({"role": message["role"], "content": content})

        return "\n\n".join(system_parts), converted

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        model_config: Optional[ModelConfig] = None
    ) -> CompletionResult:
        config = model_config or ModelConfig.from_settings()
        client = self._get_client()
        system, converted = self.convert_messages(messages)

        logger.info("Calling completion provider", provider=self.provider, model=config.model)

        try:
            # Anthropic recommends tuning temperature or top_p, not both
            response = await client.messages.create(
                model=config.model,
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                system=system,
                messages=converted
            )
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError):
            raise ProviderAuthError("Invalid API key", "Please check your API key configuration")
        except anthropic.RateLimitError:
            raise RateLimitError("Rate limit exceeded", "Too many requests. Please try again later.")
        except anthropic.BadRequestError as e:
            raise InvalidRequestError("Invalid request", e.message)
        except anthropic.APITimeoutError:
            raise ProviderError("Provider API error", "The completion provider timed out")
        except anthropic.APIStatusError as e:
            raise ProviderError("Provider API error", e.message, status_code=e.status_code)
        except anthropic.APIError as e:
            raise ProviderError("Provider API error", e.message)

        text = LLMResponseHandler.handle_response(response.content)
        if not text:
            raise ProviderError("Provider API error", "No content received from completion provider")

        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        return CompletionResult(
            text=text,
            usage=TokenUsage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens
            ),
            model=response.model
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


_completion_client: Optional[CompletionClient] = None


def create_completion_client(provider: Optional[str] = None) -> CompletionClient:
    """Build a client for the named provider (defaults to settings)"""
    provider = provider or settings.COMPLETION_PROVIDER
    if provider == "anthropic":
        return AnthropicCompletionClient()
    return OpenAICompletionClient()


def get_completion_client() -> CompletionClient:
    """Get the process-wide completion client, built on first use"""
    global _completion_client
    if _completion_client is None:
        _completion_client = create_completion_client()
        logger.info("Completion client initialized", provider=_completion_client.provider)
    return _completion_client


async def close_completion_client() -> None:
    """Release the process-wide client's connections"""
    global _completion_client
    if _completion_client is not None:
        await _completion_client.aclose()
        _completion_client = None
