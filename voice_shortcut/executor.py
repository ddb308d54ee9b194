"""Single-exchange HTTP executor with classification and retry policy."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx

from voice_shortcut._types import AttemptOutcome, RequestAttempt
from voice_shortcut.cancellation import CancellationToken, check
from voice_shortcut.classification import (
    Classification,
    MalformedResponse,
    QuotaExceeded,
    RateLimited,
    classify_exception,
    classify_status,
)
from voice_shortcut.config import ApiConfig, RetryConfig
from voice_shortcut.credentials import CredentialProvider
from voice_shortcut.errors import NoCredentialError, SpeechError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, SpeechError, float], None]
RateLimitCallback = Callable[[float], None]
SleepFunc = Callable[[float], Awaitable[Any]]

_TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL, asyncio.TimeoutError, TimeoutError, OSError)


@dataclass
class ApiRequest:
    """Description of one remote exchange, rebuilt on every attempt."""

    method: str
    url: str
    json: Any = None
    content: bytes | None = None
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    label: str = "GEMINI"
    authenticated: bool = True


class RequestExecutor:
    """Sends requests, classifies failures once and retries per policy.

    One ``execute`` call is one logical remote exchange; chunking and merging
    happen above this layer.
    """

    def __init__(
        self,
        credentials: CredentialProvider | None = None,
        *,
        api: ApiConfig | None = None,
        retry: RetryConfig | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFunc | None = None,
        on_rate_limit: RateLimitCallback | None = None,
    ):
        """Initialize executor.

        Args:
            credentials: Provider consulted before each authenticated attempt
            api: Timeouts for the request and resource phases
            retry: Attempt budget and backoff policy
            client: Optional pre-built httpx.AsyncClient (closed by caller)
            sleep: Awaitable sleep used for backoff, injectable for tests
            on_rate_limit: Default observer for rate-limit waits
        """
        self.credentials = credentials
        self.api = api or ApiConfig()
        self.retry = retry or RetryConfig()
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.api.request_timeout, write=self.api.resource_timeout)
        )
        self._client_owned = client is None
        self._sleep = sleep or asyncio.sleep
        self._on_rate_limit = on_rate_limit
        logger.info(
            "RequestExecutor initialized: max_attempts=%d, request_timeout=%.0fs, "
            "resource_timeout=%.0fs",
            self.retry.max_attempts,
            self.api.request_timeout,
            self.api.resource_timeout,
        )

    async def __aenter__(self) -> "RequestExecutor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.aclose()
        return False

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this executor created it."""
        if self._client_owned:
            await self._client.aclose()
            logger.debug("HTTP client closed")

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff before the attempt following ``attempt``."""
        return min(self.retry.base_delay * (2 ** (attempt - 1)), self.retry.max_delay)

    async def execute(
        self,
        request: ApiRequest,
        decode: Callable[[httpx.Response], T],
        *,
        allow_retry: bool = False,
        token: CancellationToken | None = None,
        on_retry: RetryCallback | None = None,
        on_rate_limit: RateLimitCallback | None = None,
    ) -> T:
        """Run one remote exchange.

        Args:
            request: Request description
            decode: Turns a 2xx response into the expected shape; raising
                UnexpectedResponseShapeError, ValueError, KeyError or TypeError
                marks the response as malformed
            allow_retry: Use the full attempt budget instead of a single try
            token: Cancellation token checked around every await
            on_retry: Called with (attempt, error, delay) before a backoff sleep
            on_rate_limit: Called with the wait in seconds before a rate-limit sleep

        Returns:
            Decoded response

        Raises:
            SpeechError: Classified failure once retries are exhausted or not allowed
            asyncio.CancelledError: If the token is cancelled
        """
        max_attempts = self.retry.max_attempts if allow_retry else 1
        on_rate_limit = on_rate_limit or self._on_rate_limit
        attempt = 0
        rate_limit_waits = 0

        while True:
            attempt += 1
            check(token)
            started = time.monotonic()
            cause: BaseException | None = None

            try:
                response = await self._send(request)
                check(token)
                if response.is_success:
                    try:
                        result = decode(response)
                    except SpeechError as e:
                        cause = e
                        classification = classify_exception(e)
                    except (ValueError, KeyError, TypeError) as e:
                        cause = e
                        classification = MalformedResponse(f"{type(e).__name__}: {e}")
                    else:
                        self._log_attempt(request, attempt, started, AttemptOutcome.SUCCESS)
                        return result
                else:
                    classification = classify_status(
                        response.status_code, response.content, response.headers
                    )
            except asyncio.CancelledError:
                self._log_attempt(request, attempt, started, AttemptOutcome.CANCELLED)
                raise
            except _TRANSPORT_ERRORS as e:
                cause = e
                classification = classify_exception(e)

            retryable = allow_retry and classification.retryable
            self._log_attempt(
                request,
                attempt,
                started,
                AttemptOutcome.RETRYABLE_ERROR if retryable else AttemptOutcome.FATAL_ERROR,
                classification,
            )
            error = classification.to_error()

            if not retryable:
                raise _chain(error, cause)

            if isinstance(classification, (RateLimited, QuotaExceeded)):
                if rate_limit_waits >= self.retry.max_rate_limit_waits:
                    logger.warning(
                        "%s: giving up after %d rate-limit waits", request.label, rate_limit_waits
                    )
                    raise _chain(error, cause)
                rate_limit_waits += 1
                # Server-dictated waits do not use up an attempt slot
                attempt -= 1
                delay = classification.retry_after + self.retry.rate_limit_buffer
                logger.info(
                    "%s: rate limited, waiting %.1fs (server asked for %.1fs)",
                    request.label,
                    delay,
                    classification.retry_after,
                )
                if on_rate_limit:
                    on_rate_limit(delay)
                await self._pause(delay, token)
                logger.info("%s: rate-limit wait finished, retrying", request.label)
                continue

            if attempt >= max_attempts:
                logger.warning(
                    "%s: giving up after %d attempts: %s", request.label, attempt, error
                )
                raise _chain(error, cause)

            delay = self.backoff_delay(attempt)
            logger.info(
                "%s: attempt %d/%d failed (%s), retrying in %.1fs",
                request.label,
                attempt,
                max_attempts,
                error.label,
                delay,
            )
            if on_retry:
                on_retry(attempt, error, delay)
            await self._pause(delay, token)

    async def _pause(self, delay: float, token: CancellationToken | None) -> None:
        check(token)
        await self._sleep(delay)
        check(token)

    async def _send(self, request: ApiRequest) -> httpx.Response:
        http_request = self._client.build_request(
            request.method,
            request.url,
            params=request.params or None,
            headers=request.headers or None,
            json=request.json if request.content is None else None,
            content=request.content,
        )
        if request.authenticated:
            credential = self.credentials.get_credential() if self.credentials else None
            if credential is None:
                raise NoCredentialError()
            credential.apply(http_request)

        logger.debug("%s: sending %s %s", request.label, request.method, http_request.url.path)
        response = await asyncio.wait_for(
            self._client.send(http_request), timeout=self.api.resource_timeout
        )
        logger.debug("%s: received HTTP %d", request.label, response.status_code)
        return response

    def _log_attempt(
        self,
        request: ApiRequest,
        attempt: int,
        started: float,
        outcome: AttemptOutcome,
        classification: Classification | None = None,
    ) -> None:
        record = RequestAttempt(
            attempt=attempt, elapsed=time.monotonic() - started, outcome=outcome
        )
        logger.debug(
            "%s: attempt %d finished in %.2fs: %s%s",
            request.label,
            record.attempt,
            record.elapsed,
            record.outcome.value,
            f" ({classification})" if classification is not None else "",
        )


def _chain(error: SpeechError, cause: BaseException | None) -> SpeechError:
    if cause is not None and cause is not error:
        error.__cause__ = cause
    return error
