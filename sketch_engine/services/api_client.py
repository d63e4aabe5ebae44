"""
HTTP client for a remote generation service.

Speaks the same contract as the in-process orchestrator so the session can
drive either one.
"""
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from logging_config import logger
from models.generation import GenerationOutcome, GenerationRequest, GenerationResponse, HistoryMessage


class GenerationAPIClient:
    """Async client for `POST /generate` and `GET /health`"""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 180.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport
        )

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        payload = request.model_dump(by_alias=True, exclude_none=True)

        try:
            response = await self._http.post("/generate", json=payload)
        except httpx.HTTPError as e:
            logger.error("Generate request failed", base_url=self.base_url, error=str(e))
            return GenerationOutcome(
                response=GenerationResponse(
                    success=False,
                    error="Failed to connect to server",
                    details=f"Could not reach {self.base_url}"
                ),
                status_code=503,
                retryable=True
            )

        try:
            envelope = GenerationResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError):
            envelope = GenerationResponse(
                success=False,
                error="Failed to generate UI",
                details=f"Unexpected response from server (HTTP {response.status_code})"
            )

        if response.is_success and not envelope.success:
            logger.warning("Server reported failure with a success status", status_code=response.status_code)

        return GenerationOutcome(
            response=envelope,
            status_code=response.status_code,
            retryable=response.status_code in (429, 500, 502, 503, 504)
        )

    async def iterate(
        self,
        current_code: str,
        feedback: str,
        history: Optional[List[HistoryMessage]] = None
    ) -> GenerationOutcome:
        """Request a modification of existing code"""
        return await self.generate(
            GenerationRequest(feedback=feedback, current_code=current_code, history=history)
        )

    async def check_health(self) -> Dict[str, Any]:
        response = await self._http.get("/health")
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        await self._http.aclose()
