"""
Remote conversion client for the Gemini generateContent endpoint.

Sends the user's text wrapped in the POML instructions and retries failed
attempts with exponential backoff. Intermediate failures are only logged;
callers see Success or a single EXHAUSTED_RETRIES failure.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.prompt import build_conversion_prompt

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash-preview-05-20"
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_BACKOFF_MS = 1000
DEFAULT_TIMEOUT_SECONDS = 30.0


class FailureKind(Enum):
    """Why an attempt, or the whole conversion, failed."""
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"
    MALFORMED_RESPONSE = "malformed_response"
    EXHAUSTED_RETRIES = "exhausted_retries"


@dataclass(frozen=True)
class Success:
    document: str
    attempts: int = 1


@dataclass(frozen=True)
class Failure:
    """Final failure. `cause` and `status` describe the last failed attempt."""
    kind: FailureKind
    cause: Optional[FailureKind] = None
    status: Optional[int] = None
    detail: str = ""
    attempts: int = 0


ConversionResult = Union[Success, Failure]


class AttemptFailed(Exception):
    """One attempt failed in a way that warrants a retry."""

    def __init__(self, kind: FailureKind, detail: str, status: Optional[int] = None):
        super().__init__(detail)
        self.kind = kind
        self.detail = detail
        self.status = status


def build_payload(prompt: str) -> Dict[str, Any]:
    """Request body for generateContent with a single user turn."""
    return {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}


def extract_document(body: Any) -> Optional[str]:
    """Pull candidates[0].content.parts[0].text out of a response body.

    Returns None for any other shape, or when the text is empty.
    """
    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(text, str) or not text:
        return None
    return text


class GeminiConversionClient:
    """Converts free-form text to POML through the Gemini REST API.

    Each attempt is bounded by the HTTP timeout, so a conversion costs at most
    the sum of the backoff delays plus max_attempts timeouts.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_backoff_ms: int = DEFAULT_INITIAL_BACKOFF_MS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """Initialize the client.

        Args:
            api_key: Key sent as the `key` query parameter (optional)
            model: Gemini model name (required)
            base_url: API root, without the /models path
            max_attempts: Total attempts including the first one
            initial_backoff_ms: Wait before the first retry; doubles each retry
            timeout_seconds: Per-attempt HTTP timeout
            http_client: Shared client; one is created per call when omitted
            sleep: Awaitable used for backoff delays, in seconds

        Raises:
            ValueError: If model is empty or a limit is out of range
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if initial_backoff_ms < 0:
            raise ValueError("initial_backoff_ms must be >= 0")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.initial_backoff_ms = initial_backoff_ms
        self.timeout_seconds = timeout_seconds
        self.http_client = http_client
        self._sleep = sleep

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def convert(self, input_text: str) -> ConversionResult:
        """Convert text to a POML document.

        Cancelling the awaiting task aborts the outstanding request and stops
        further retries; asyncio.CancelledError propagates unchanged.
        """
        payload = build_payload(build_conversion_prompt(input_text))
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.initial_backoff_ms / 1000),
            retry=retry_if_exception_type(AttemptFailed),
            before_sleep=self._log_backoff,
            sleep=self._sleep,
        )
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    document = await self._attempt(payload, attempts)
        except RetryError as e:
            last = e.last_attempt.exception()
            logger.error("Conversion failed after %d attempts: %s", attempts, last)
            return Failure(
                kind=FailureKind.EXHAUSTED_RETRIES,
                cause=last.kind,
                status=last.status,
                detail=last.detail,
                attempts=attempts
            )
        return Success(document=document, attempts=attempts)

    async def _attempt(self, payload: Dict[str, Any], number: int) -> str:
        try:
            response = await self._post(payload)
        except httpx.HTTPError as e:
            raise self._failed(number, FailureKind.NETWORK_ERROR, f"{type(e).__name__}: {e}")

        if not response.is_success:
            raise self._failed(
                number,
                FailureKind.HTTP_ERROR,
                f"API call failed with status: {response.status_code}",
                status=response.status_code
            )

        try:
            body = response.json()
        except ValueError:
            raise self._failed(number, FailureKind.MALFORMED_RESPONSE, "Response body is not JSON")

        document = extract_document(body)
        if document is None:
            raise self._failed(number, FailureKind.MALFORMED_RESPONSE, "Unexpected API response structure")
        return document

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        params = {"key": self.api_key} if self.api_key else None
        if self.http_client is not None:
            return await self.http_client.post(
                self.endpoint, json=payload, params=params, timeout=self.timeout_seconds
            )
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(self.endpoint, json=payload, params=params)

    @staticmethod
    def _failed(number: int, kind: FailureKind, detail: str, status: Optional[int] = None) -> AttemptFailed:
        logger.warning("Attempt %d failed (%s): %s", number, kind.value, detail)
        return AttemptFailed(kind, detail, status)

    @staticmethod
    def _log_backoff(retry_state) -> None:
        logger.info(
            "Retrying conversion in %.1fs (attempt %d failed)",
            retry_state.next_action.sleep,
            retry_state.attempt_number
        )
