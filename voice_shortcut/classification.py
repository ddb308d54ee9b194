"""Pure mapping of raw HTTP and transport failures onto error classifications.

Each raw failure maps to exactly one ``Classification`` before any retry
decision is made. Nothing in this module performs I/O.
"""

import asyncio
import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

import httpx

from voice_shortcut.errors import (
    IncorrectCredentialError,
    InvalidCredentialError,
    ModelUnavailableError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    QuotaExceededError,
    RateLimitedError,
    RequestTimeoutError,
    ResourceTimeoutError,
    ServerFailureError,
    ServiceUnavailableError,
    SpeechError,
    UnexpectedResponseShapeError,
)

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)s\s*$")
_RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"


class TimeoutPhase(Enum):
    """Which deadline expired."""

    REQUEST = "request"
    RESOURCE = "resource"


@dataclass(frozen=True)
class Classification:
    """Base for the closed set of failure classifications."""

    @property
    def retryable(self) -> bool:
        return False

    def to_error(self) -> SpeechError:
        raise NotImplementedError


@dataclass(frozen=True)
class AuthError(Classification):
    status: int
    message: str = ""

    def to_error(self) -> SpeechError:
        if self.status == 403:
            return PermissionDeniedError(self.message or None)
        if self.status == 401:
            return InvalidCredentialError(self.message or None)
        return IncorrectCredentialError(self.message or None)


@dataclass(frozen=True)
class RateLimited(Classification):
    retry_after: float | None = None

    @property
    def retryable(self) -> bool:
        return self.retry_after is not None

    def to_error(self) -> SpeechError:
        return RateLimitedError(retry_after=self.retry_after)


@dataclass(frozen=True)
class QuotaExceeded(Classification):
    retry_after: float | None = None

    @property
    def retryable(self) -> bool:
        return self.retry_after is not None

    def to_error(self) -> SpeechError:
        return QuotaExceededError(retry_after=self.retry_after)


@dataclass(frozen=True)
class ServerError(Classification):
    code: int = 500

    @property
    def retryable(self) -> bool:
        return True

    def to_error(self) -> SpeechError:
        return ServerFailureError(self.code)


@dataclass(frozen=True)
class ServiceUnavailable(Classification):
    @property
    def retryable(self) -> bool:
        return True

    def to_error(self) -> SpeechError:
        return ServiceUnavailableError()


@dataclass(frozen=True)
class Timeout(Classification):
    phase: TimeoutPhase = TimeoutPhase.REQUEST

    @property
    def retryable(self) -> bool:
        return True

    def to_error(self) -> SpeechError:
        if self.phase is TimeoutPhase.RESOURCE:
            return ResourceTimeoutError()
        return RequestTimeoutError()


@dataclass(frozen=True)
class ConnectionLost(Classification):
    detail: str = ""

    @property
    def retryable(self) -> bool:
        return True

    def to_error(self) -> SpeechError:
        return NetworkError(self.detail or "connection lost")


@dataclass(frozen=True)
class MalformedResponse(Classification):
    detail: str = ""

    def to_error(self) -> SpeechError:
        return UnexpectedResponseShapeError(self.detail or None)


@dataclass(frozen=True)
class NotRetryable(Classification):
    cause: SpeechError

    def to_error(self) -> SpeechError:
        return self.cause


def parse_retry_after(
    headers: Mapping[str, str] | None,
    body: Mapping | None = None,
) -> float | None:
    """Extract a server-dictated wait time in seconds.

    Looks at the ``Retry-After`` header first, then at the ``retryDelay`` of a
    ``google.rpc.RetryInfo`` entry in the error body details.

    Args:
        headers: Response headers (case-insensitive mapping preferred)
        body: Decoded JSON error body

    Returns:
        Seconds to wait, or None when the server gave no hint
    """
    if headers is not None:
        value = _header(headers, "retry-after")
        if value is not None:
            try:
                seconds = float(value.strip())
            except ValueError:
                logger.debug("Ignoring non-numeric Retry-After header: %r", value)
            else:
                if seconds >= 0:
                    return seconds

    error = body.get("error") if isinstance(body, Mapping) else None
    details = error.get("details") if isinstance(error, Mapping) else None
    if isinstance(details, list):
        for detail in details:
            if not isinstance(detail, Mapping):
                continue
            if detail.get("@type") != _RETRY_INFO_TYPE and "retryDelay" not in detail:
                continue
            delay = detail.get("retryDelay")
            if isinstance(delay, str) and (match := _DURATION_RE.match(delay)):
                return float(match.group(1))
    return None


def _header(headers: Mapping[str, str], name: str) -> str | None:
    if isinstance(headers, httpx.Headers):
        return headers.get(name)
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _decode_error_body(body: bytes | str | None) -> dict | None:
    if not body:
        return None
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def classify_status(
    status: int,
    body: bytes | str | None = None,
    headers: Mapping[str, str] | None = None,
) -> Classification:
    """Classify a non-2xx HTTP response.

    The Gemini error message is inspected first because the API reports key
    and quota problems with generic status codes; otherwise the status code
    decides.

    Args:
        status: HTTP status code
        body: Raw response body
        headers: Response headers

    Returns:
        Exactly one Classification
    """
    data = _decode_error_body(body)
    retry_after = parse_retry_after(headers, data)

    message = ""
    error = data.get("error") if data else None
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        message = error["message"]
    lowered = message.lower()

    if lowered:
        if "api key" in lowered or "authentication" in lowered:
            return AuthError(status=401 if status == 401 else 400, message=message)
        if "quota" in lowered or "resource has been exhausted" in lowered:
            return QuotaExceeded(retry_after=retry_after)
        if "rate limit" in lowered:
            return RateLimited(retry_after=retry_after)

    if status == 400:
        if "model" in lowered and ("not supported" in lowered or "not available" in lowered):
            return NotRetryable(ModelUnavailableError(message or None))
        return NotRetryable(
            NetworkError(f"Invalid request (400): {message or 'bad request'}", retryable=False)
        )
    if status in (401, 403):
        return AuthError(status=status, message=message)
    if status == 404:
        return NotRetryable(NotFoundError(message or None))
    if status == 408:
        return Timeout(TimeoutPhase.REQUEST)
    if status == 429:
        return RateLimited(retry_after=retry_after)
    if status == 503:
        return ServiceUnavailable()
    if status == 504:
        return Timeout(TimeoutPhase.RESOURCE)
    if status >= 500:
        return ServerError(code=status)
    return NotRetryable(
        NetworkError(f"Unexpected HTTP status {status}: {message}".rstrip(": "), retryable=False)
    )


def classify_exception(exc: BaseException) -> Classification:
    """Classify a transport-level exception raised while sending a request.

    Args:
        exc: Exception raised by httpx, asyncio or the decoder

    Returns:
        Exactly one Classification
    """
    if isinstance(exc, SpeechError):
        if isinstance(exc, UnexpectedResponseShapeError):
            return MalformedResponse(exc.detail or "")
        return NotRetryable(exc)
    if isinstance(exc, (httpx.ConnectTimeout, httpx.ReadTimeout, httpx.PoolTimeout)):
        return Timeout(TimeoutPhase.REQUEST)
    if isinstance(exc, httpx.WriteTimeout):
        return Timeout(TimeoutPhase.RESOURCE)
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return Timeout(TimeoutPhase.RESOURCE)
    if isinstance(exc, httpx.TimeoutException):
        return Timeout(TimeoutPhase.REQUEST)
    if isinstance(exc, (httpx.NetworkError, httpx.RemoteProtocolError)):
        return ConnectionLost(str(exc) or type(exc).__name__)
    if isinstance(exc, httpx.DecodingError):
        return MalformedResponse(str(exc))
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return NotRetryable(NetworkError(str(exc), retryable=False))
    if isinstance(exc, httpx.TransportError):
        return ConnectionLost(str(exc) or type(exc).__name__)
    return NotRetryable(NetworkError(f"{type(exc).__name__}: {exc}", retryable=False))
