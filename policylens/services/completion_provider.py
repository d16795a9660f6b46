"""
Text-completion collaborator client for an OpenAI-compatible chat endpoint
"""
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from policylens.core.config import settings
from policylens.core.errors import CollaboratorUnavailableError, CompletionError, RateLimitedError

logger = logging.getLogger(__name__)


class CompletionErrorKind(str, Enum):
    """How a completion call failed"""
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    API_ERROR = "api_error"


@dataclass
class CompletionResponse:
    """Response from the completion API"""
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None
    processing_time: float = 0.0
    error: Optional[str] = None
    error_kind: Optional[CompletionErrorKind] = None
    status_code: Optional[int] = None

    def raise_for_error(self) -> "CompletionResponse":
        """Raise the matching pipeline error if the call failed"""
        if self.error is None:
            return self
        if self.error_kind == CompletionErrorKind.RATE_LIMITED:
            raise RateLimitedError(self.error)
        if self.error_kind == CompletionErrorKind.UNAVAILABLE:
            raise CollaboratorUnavailableError("completion service", self.error)
        raise CompletionError(self.error, status_code=self.status_code)


class CompletionProvider:
    """Chat-completions client (GitHub Copilot API by default)"""

    def __init__(
        self,
        model: str = settings.llm_model,
        api_base: str = settings.llm_api_base,
        api_token: Optional[str] = None,
        timeout: float = settings.llm_request_timeout,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport

        self.api_token = api_token or os.getenv("COPILOT_ACCESS_TOKEN") or settings.copilot_access_token
        if not self.api_token:
            logger.warning("COPILOT_ACCESS_TOKEN is not set; completion calls will be rejected")

        # Set up required headers for GitHub Copilot
        self.headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Copilot-Integration-Id": "vscode-chat",
            "editor-version": "VSCode/1.85.0",
            "User-Agent": "PolicyLens/1.0"
        }

        logger.info(f"Initialized completion provider with model: {model}")

    async def generate_answer(
        self,
        prompt: str,
        max_tokens: int = 2048,
        temperature: float = settings.llm_temperature,
    ) -> CompletionResponse:
        """
        Generate a completion for a single user prompt

        Args:
            prompt: The prompt to send
            max_tokens: Output length budget
            temperature: Temperature for response generation

        Returns:
            CompletionResponse, with error fields set on failure
        """
        start_time = time.time()
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": prompt
                }
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        logger.debug(f"Sending completion request ({len(prompt)} chars, max_tokens={max_tokens})")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.api_base}/chat/completions",
                    headers=self.headers,
                    json=payload
                )
        except httpx.TimeoutException:
            return self._failure("Completion API request timed out", CompletionErrorKind.TIMEOUT, start_time)
        except (httpx.ConnectError, httpx.UnsupportedProtocol) as e:
            return self._failure(f"Completion API unreachable: {e}", CompletionErrorKind.UNAVAILABLE, start_time)
        except httpx.RequestError as e:
            return self._failure(f"Completion API request failed: {e}", CompletionErrorKind.API_ERROR, start_time)

        processing_time = time.time() - start_time

        if response.status_code != 200:
            error_text = response.text
            if response.status_code == 429:
                logger.warning(f"Completion API rate limit exceeded: {error_text}")
                return CompletionResponse(
                    content="",
                    model=self.model,
                    processing_time=processing_time,
                    error="Completion API rate limit exceeded",
                    error_kind=CompletionErrorKind.RATE_LIMITED,
                    status_code=429,
                )

            logger.error(f"Completion API error {response.status_code}: {error_text}")
            if response.status_code == 401:
                error_msg = "Completion API authentication failed. Check your COPILOT_ACCESS_TOKEN."
            elif response.status_code == 403:
                error_msg = "Completion API access forbidden. Verify your subscription."
            else:
                error_msg = f"Completion API error {response.status_code}: {error_text}"
            return CompletionResponse(
                content="",
                model=self.model,
                processing_time=processing_time,
                error=error_msg,
                error_kind=CompletionErrorKind.API_ERROR,
                status_code=response.status_code,
            )

        try:
            response_data = response.json()
            choice = response_data.get("choices", [{}])[0]
            content = (choice.get("message", {}).get("content") or "").strip()
        except (ValueError, IndexError, AttributeError) as e:
            return self._failure(f"Completion API returned an unreadable body: {e}", CompletionErrorKind.API_ERROR, start_time)

        usage = None
        if "usage" in response_data:
            usage_data = response_data["usage"]
            usage = {
                "prompt_tokens": usage_data.get("prompt_tokens", 0),
                "completion_tokens": usage_data.get("completion_tokens", 0),
                "total_tokens": usage_data.get("total_tokens", 0)
            }

        logger.debug(f"Completion generated in {processing_time:.2f}s ({len(content)} chars)")
        return CompletionResponse(
            content=content,
            model=response_data.get("model", self.model),
            usage=usage,
            processing_time=processing_time,
            status_code=200,
        )

    async def complete(self, prompt: str, max_tokens: int, temperature: float = settings.llm_temperature) -> str:
        """Generate a completion and return its text, raising pipeline errors on failure"""
        response = await self.generate_answer(prompt, max_tokens=max_tokens, temperature=temperature)
        return response.raise_for_error().content

    def _failure(self, message: str, kind: CompletionErrorKind, start_time: float) -> CompletionResponse:
        logger.error(message)
        return CompletionResponse(
            content="",
            model=self.model,
            processing_time=time.time() - start_time,
            error=message,
            error_kind=kind,
        )
