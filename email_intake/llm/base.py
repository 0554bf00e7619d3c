"""
Abstract base class for LLM clients.

Both wire protocols share prompt building, the retry loop, error
classification and cost estimation. Concrete clients only describe their
request body and how to read content and usage out of the reply.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from email_intake.config import LLMProtocol, Settings, settings as default_settings
from email_intake.core.errors import LLMError, LLMErrorCode
from email_intake.core.logging import get_logger
from email_intake.core.models import EmailRecord, TokenUsage
from email_intake.llm import prompts
from email_intake.llm.pricing import calculate_cost

log = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class LLMResponse:
    """Generated reply plus accounting data."""

    content: str
    token_usage: TokenUsage
    model: str
    processing_time_ms: int = 0
    category: str | None = None
    priority: int | None = None
    sentiment: str | None = None


@dataclass
class ConnectionCheck:
    success: bool
    message: str
    model: str | None = None

    def to_dict(self) -> dict:
        return {"success": self.success, "message": self.message, "model": self.model}


class BaseLLMClient(ABC):
    """Provider-agnostic contract: one email in, one classified reply or LLMError out."""

    protocol: LLMProtocol
    endpoint: str

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings or default_settings
        self.model = self.settings.openai_model
        self.max_tokens = self.settings.openai_max_tokens
        self.use_structured_output = self.settings.use_structured_output
        self.system_prompt = self.settings.system_prompt or prompts.SYSTEM_PROMPT
        self.max_attempts = max(1, self.settings.llm_max_attempts)
        self.base_delay = self.settings.llm_base_delay_seconds
        self._backoff = wait_exponential(multiplier=self.base_delay)
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=self.settings.llm_timeout_seconds)
        self._sleep = sleep

        if not self.settings.openai_api_key:
            log.warning("openai_api_key_missing")

    @property
    def url(self) -> str:
        return f"{self.settings.openai_base_url.rstrip('/')}{self.endpoint}"

    @abstractmethod
    def build_request(self, system: str, user: str) -> dict[str, Any]:
        """Build the JSON request body for one completion."""

    @abstractmethod
    def build_test_request(self) -> dict[str, Any]:
        """Build a minimal request used to verify credentials."""

    @abstractmethod
    def extract_text(self, data: dict[str, Any]) -> str:
        """Return the generated text from a reply body, or an empty string."""

    @abstractmethod
    def extract_usage(self, data: dict[str, Any]) -> TokenUsage:
        """Return the token usage reported in a reply body."""

    def build_prompt(self, record: EmailRecord) -> tuple[str, str]:
        """Return (system, user) prompts for a record."""
        user = prompts.USER_PROMPT.format(
            sender=record.sender,
            subject=record.subject,
            received=record.received_at or record.date,
            body=record.content,
        )
        return self.system_prompt, user.strip()

    async def process_email(self, record: EmailRecord) -> LLMResponse:
        """
        Generate a reply for an email.

        Args:
            record: Email to answer

        Returns:
            LLMResponse with content, token usage and processing time

        Raises:
            LLMError: classified failure after the retry policy is exhausted
        """
        start = time.monotonic()
        system, user = self.build_prompt(record)

        log.info(
            "llm_request_start",
            email_id=record.id,
            model=self.model,
            protocol=self.protocol.value,
            structured=self.use_structured_output,
        )

        data = await self._post_with_retry(self.build_request(system, user))
        response = self._parse_reply(data)
        response.processing_time_ms = int((time.monotonic() - start) * 1000)

        log.info(
            "llm_response_received",
            email_id=record.id,
            content_length=len(response.content),
            total_tokens=response.token_usage.total,
            processing_time_ms=response.processing_time_ms,
            category=response.category,
        )
        return response

    def calculate_cost(self, usage: TokenUsage) -> float:
        return calculate_cost(usage, self.model)

    async def test_connection(self) -> ConnectionCheck:
        """Send one minimal request, without retries, to verify the API key and model."""
        if not self.settings.openai_api_key:
            return ConnectionCheck(success=False, message="API key not configured")

        try:
            response = await self.http.post(
                self.url, json=self.build_test_request(), headers=self._headers()
            )
        except httpx.HTTPError as e:
            log.error("llm_connection_test_error", error=str(e))
            return ConnectionCheck(success=False, message=f"Error: {e}")

        if response.is_success:
            model = _safe_json(response).get("model") or self.model
            return ConnectionCheck(success=True, message="Connection successful", model=model)

        return ConnectionCheck(
            success=False,
            message=f"Failed: {response.status_code} - {_error_message(response)}",
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    # Internals

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.openai_api_key}",
            "Content-Type": "application/json",
        }

    def _wait(self, retry_state: RetryCallState) -> float:
        """Provider-requested delay for rate limits, exponential backoff otherwise."""
        error = retry_state.outcome.exception()
        if isinstance(error, LLMError) and error.code == LLMErrorCode.RATE_LIMIT:
            if error.retry_after is not None:
                return error.retry_after
        return self._backoff(retry_state)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        log.warning(
            "llm_retry_scheduled",
            attempt=retry_state.attempt_number,
            code=error.code.value,
            status=error.status_code,
            delay_seconds=retry_state.next_action.sleep,
            error=error.message,
        )

    def _retry_after(self, response: httpx.Response) -> float:
        value = response.headers.get("retry-after")
        try:
            return max(float(value), 0.0)
        except (TypeError, ValueError):
            return self.settings.llm_default_retry_after_seconds

    async def _post_with_retry(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST with bounded retries. Returns the decoded reply body."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(self._post_once, payload)

    async def _post_once(self, payload: dict[str, Any]) -> dict[str, Any]:
        """One attempt. Every failure is raised as a classified LLMError."""
        try:
            response = await self.http.post(self.url, json=payload, headers=self._headers())
        except httpx.TransportError as e:
            raise LLMError(LLMErrorCode.TIMEOUT, f"Request timeout or network error: {e}") from e

        status = response.status_code

        if status == 429:
            raise LLMError(
                LLMErrorCode.RATE_LIMIT,
                "Rate limit exceeded",
                retry_after=self._retry_after(response),
                status_code=status,
            )

        if status >= 500:
            raise LLMError(LLMErrorCode.API_ERROR, _error_message(response), status_code=status)

        if status >= 400:
            log.error("llm_invalid_request", status=status, error=_error_message(response))
            raise LLMError(
                LLMErrorCode.INVALID_REQUEST, _error_message(response), status_code=status
            )

        try:
            data = response.json()
        except ValueError as e:
            raise LLMError(LLMErrorCode.EMPTY_RESPONSE, "Reply body is not valid JSON") from e
        if not isinstance(data, dict):
            raise LLMError(LLMErrorCode.EMPTY_RESPONSE, "Reply body is not a JSON object")
        return data

    def _parse_reply(self, data: dict[str, Any]) -> LLMResponse:
        text = self.extract_text(data)
        if not text or not text.strip():
            raise LLMError(LLMErrorCode.EMPTY_RESPONSE, f"No content in {self.model} response")

        response = LLMResponse(
            content=text,
            token_usage=self.extract_usage(data),
            model=data.get("model") or self.model,
        )

        if self.use_structured_output:
            self._apply_structured(response, text)
            if not response.content.strip():
                raise LLMError(LLMErrorCode.EMPTY_RESPONSE, "Structured reply has an empty response")

        return response

    def _apply_structured(self, response: LLMResponse, text: str) -> None:
        """Unpack a structured reply in place. Unparseable text is kept as-is."""
        try:
            structured = json.loads(text)
        except json.JSONDecodeError:
            log.warning("structured_output_unparseable", model=self.model)
            return

        if not isinstance(structured, dict) or not isinstance(structured.get("response"), str):
            log.warning("structured_output_unparseable", model=self.model)
            return

        response.content = structured["response"]
        response.category = structured.get("category")
        response.priority = structured.get("priority")
        response.sentiment = structured.get("sentiment")


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, LLMError) and error.retryable


def _safe_json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_message(response: httpx.Response) -> str:
    """Provider error message, or a generic one with the status code."""
    error = _safe_json(response).get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return f"API error: {response.status_code}"
