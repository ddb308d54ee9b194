"""Caller-facing error taxonomy for speech operations.

Every failure that leaves the pipeline is one of the ``SpeechError``
subclasses below. Cancellation is not an error: it travels as
``asyncio.CancelledError`` and is only described here so the UI can label it.
"""

import asyncio
from enum import Enum

__all__ = [
    "ErrorKind",
    "SpeechError",
    "NoCredentialError",
    "InvalidCredentialError",
    "IncorrectCredentialError",
    "PermissionDeniedError",
    "NotFoundError",
    "ModelUnavailableError",
    "RateLimitedError",
    "QuotaExceededError",
    "ServerFailureError",
    "ServiceUnavailableError",
    "RequestTimeoutError",
    "ResourceTimeoutError",
    "NetworkError",
    "FileTooLargeError",
    "EmptyInputError",
    "NoSpeechDetectedError",
    "ResponseTooShortError",
    "UnexpectedResponseShapeError",
    "describe",
    "CANCELLED_LABEL",
]


class ErrorKind(Enum):
    """Closed set of failure kinds surfaced to callers."""

    NO_CREDENTIAL = "no_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    INCORRECT_CREDENTIAL = "incorrect_credential"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    MODEL_UNAVAILABLE = "model_unavailable"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    SERVER_ERROR = "server_error"
    SERVICE_UNAVAILABLE = "service_unavailable"
    REQUEST_TIMEOUT = "request_timeout"
    RESOURCE_TIMEOUT = "resource_timeout"
    NETWORK_ERROR = "network_error"
    FILE_TOO_LARGE = "file_too_large"
    EMPTY_INPUT = "empty_input"
    NO_SPEECH_DETECTED = "no_speech_detected"
    RESPONSE_TOO_SHORT = "response_too_short"
    UNEXPECTED_RESPONSE_SHAPE = "unexpected_response_shape"
    CANCELLED = "cancelled"


_LABELS: dict[ErrorKind, str] = {
    ErrorKind.NO_CREDENTIAL: "No API Key",
    ErrorKind.INVALID_CREDENTIAL: "Invalid API Key",
    ErrorKind.INCORRECT_CREDENTIAL: "Incorrect API Key",
    ErrorKind.PERMISSION_DENIED: "Permission Denied",
    ErrorKind.NOT_FOUND: "Not Found",
    ErrorKind.MODEL_UNAVAILABLE: "Model Unavailable",
    ErrorKind.RATE_LIMITED: "Rate Limited",
    ErrorKind.QUOTA_EXCEEDED: "Quota Exceeded",
    ErrorKind.SERVER_ERROR: "Server Error",
    ErrorKind.SERVICE_UNAVAILABLE: "Service Down",
    ErrorKind.REQUEST_TIMEOUT: "Request Timeout",
    ErrorKind.RESOURCE_TIMEOUT: "Processing Timeout",
    ErrorKind.NETWORK_ERROR: "Network Error",
    ErrorKind.FILE_TOO_LARGE: "File Too Large",
    ErrorKind.EMPTY_INPUT: "Empty Input",
    ErrorKind.NO_SPEECH_DETECTED: "No Speech Detected",
    ErrorKind.RESPONSE_TOO_SHORT: "Response Too Short",
    ErrorKind.UNEXPECTED_RESPONSE_SHAPE: "Unexpected Response",
    ErrorKind.CANCELLED: "Cancelled",
}

CANCELLED_LABEL = _LABELS[ErrorKind.CANCELLED]

API_KEY_URL = "https://aistudio.google.com/app/apikey"
QUOTA_URL = "https://console.cloud.google.com/apis/api/generativelanguage.googleapis.com/quotas"


class SpeechError(Exception):
    """Base class for all caller-facing speech pipeline failures.

    Attributes:
        kind: Member of the closed ErrorKind set
        detail: Optional server or transport detail
        retry_after: Server-dictated wait in seconds, if any
    """

    kind: ErrorKind = ErrorKind.NETWORK_ERROR
    default_retryable: bool = False

    def __init__(
        self,
        detail: str | None = None,
        *,
        retry_after: float | None = None,
        retryable: bool | None = None,
    ):
        self.detail = detail
        self.retry_after = retry_after
        self._retryable = retryable
        super().__init__(self._summary())

    def _summary(self) -> str:
        if self.detail:
            return f"{self.label}: {self.detail}"
        return self.label

    @property
    def label(self) -> str:
        """Short status label for a menu bar or popup title."""
        return _LABELS[self.kind]

    @property
    def retryable(self) -> bool:
        """Whether a user-triggered retry makes sense for this failure."""
        if self._retryable is not None:
            return self._retryable
        return self.default_retryable

    @property
    def message(self) -> str:
        """Longer explanation with a suggested remediation."""
        return _MESSAGES[self.kind](self)


class NoCredentialError(SpeechError):
    kind = ErrorKind.NO_CREDENTIAL


class InvalidCredentialError(SpeechError):
    kind = ErrorKind.INVALID_CREDENTIAL


class IncorrectCredentialError(SpeechError):
    kind = ErrorKind.INCORRECT_CREDENTIAL


class PermissionDeniedError(SpeechError):
    kind = ErrorKind.PERMISSION_DENIED


class NotFoundError(SpeechError):
    kind = ErrorKind.NOT_FOUND


class ModelUnavailableError(SpeechError):
    kind = ErrorKind.MODEL_UNAVAILABLE


class RateLimitedError(SpeechError):
    """Too many requests; retryable only when the server says how long to wait."""

    kind = ErrorKind.RATE_LIMITED

    @property
    def retryable(self) -> bool:
        if self._retryable is not None:
            return self._retryable
        return self.retry_after is not None


class QuotaExceededError(RateLimitedError):
    kind = ErrorKind.QUOTA_EXCEEDED


class ServerFailureError(SpeechError):
    kind = ErrorKind.SERVER_ERROR
    default_retryable = True

    def __init__(self, code: int, detail: str | None = None, **kwargs):
        self.code = code
        super().__init__(detail, **kwargs)

    def _summary(self) -> str:
        base = f"{self.label} ({self.code})"
        return f"{base}: {self.detail}" if self.detail else base


class ServiceUnavailableError(SpeechError):
    kind = ErrorKind.SERVICE_UNAVAILABLE
    default_retryable = True


class RequestTimeoutError(SpeechError):
    kind = ErrorKind.REQUEST_TIMEOUT
    default_retryable = True


class ResourceTimeoutError(SpeechError):
    kind = ErrorKind.RESOURCE_TIMEOUT
    default_retryable = True


class NetworkError(SpeechError):
    kind = ErrorKind.NETWORK_ERROR
    default_retryable = True


class FileTooLargeError(SpeechError):
    kind = ErrorKind.FILE_TOO_LARGE


class EmptyInputError(SpeechError):
    kind = ErrorKind.EMPTY_INPUT


class NoSpeechDetectedError(SpeechError):
    kind = ErrorKind.NO_SPEECH_DETECTED


class ResponseTooShortError(SpeechError):
    kind = ErrorKind.RESPONSE_TOO_SHORT


class UnexpectedResponseShapeError(SpeechError):
    kind = ErrorKind.UNEXPECTED_RESPONSE_SHAPE


def _wait_hint(error: SpeechError, fallback: str) -> str:
    if error.retry_after is not None:
        return f"Please wait {int(error.retry_after)} seconds and try again."
    return fallback


_MESSAGES = {
    ErrorKind.NO_CREDENTIAL: lambda e: (
        "No Google API key is configured.\n\n"
        f"Create a key in Google AI Studio ({API_KEY_URL}) and set GEMINI_API_KEY."
    ),
    ErrorKind.INVALID_CREDENTIAL: lambda e: (
        "The API key was rejected.\n\n"
        f"Check the key in Google AI Studio ({API_KEY_URL}) and update your configuration."
    ),
    ErrorKind.INCORRECT_CREDENTIAL: lambda e: (
        "The API key is not valid for this request.\n\n"
        f"Create a new key in Google AI Studio ({API_KEY_URL})."
    ),
    ErrorKind.PERMISSION_DENIED: lambda e: (
        "The API key does not have access to this model.\n\n"
        "Enable billing (paid plan) for the Gemini API or choose another model."
    ),
    ErrorKind.NOT_FOUND: lambda e: (
        "The requested resource was not found.\n\nCheck the configured model name."
    ),
    ErrorKind.MODEL_UNAVAILABLE: lambda e: (
        "The selected model is not available.\n\n"
        "Choose a different model or download the offline model."
    ),
    ErrorKind.RATE_LIMITED: lambda e: (
        "Too many requests were sent in a short time.\n\n"
        + _wait_hint(e, "Wait a moment and try again, or enable billing for higher limits.")
    ),
    ErrorKind.QUOTA_EXCEEDED: lambda e: (
        "The API quota is exhausted.\n\n"
        + _wait_hint(e, f"Check your quota at {QUOTA_URL} or enable billing.")
    ),
    ErrorKind.SERVER_ERROR: lambda e: (
        f"An error occurred on Google's servers ({getattr(e, 'code', 500)}).\n\n"
        "Please try again later."
    ),
    ErrorKind.SERVICE_UNAVAILABLE: lambda e: (
        "The Gemini service is temporarily unavailable.\n\n"
        "Please try again in a few moments."
    ),
    ErrorKind.REQUEST_TIMEOUT: lambda e: (
        "The request took too long.\n\n"
        "Check your internet connection or use a shorter recording."
    ),
    ErrorKind.RESOURCE_TIMEOUT: lambda e: (
        "Processing took too long and was stopped.\n\n"
        "Shorten the recording and try again."
    ),
    ErrorKind.NETWORK_ERROR: lambda e: (
        f"Network error: {e.detail or 'connection failed'}\n\n"
        "Please check your internet connection and try again."
    ),
    ErrorKind.FILE_TOO_LARGE: lambda e: (
        "The audio file is too large to send.\n\nPlease shorten the recording."
    ),
    ErrorKind.EMPTY_INPUT: lambda e: (
        "There is nothing to process.\n\nRecord some audio or select some text first."
    ),
    ErrorKind.NO_SPEECH_DETECTED: lambda e: (
        "No speech was detected in the recording.\n\n"
        "Speak closer to the microphone and try again."
    ),
    ErrorKind.RESPONSE_TOO_SHORT: lambda e: (
        "The response was too short to be useful.\n\nPlease try again."
    ),
    ErrorKind.UNEXPECTED_RESPONSE_SHAPE: lambda e: (
        "The server returned a response that could not be read.\n\n"
        f"{e.detail or 'Please try again.'}"
    ),
    ErrorKind.CANCELLED: lambda e: "The operation was cancelled.",
}


def describe(error: BaseException) -> tuple[str, str]:
    """Return a (label, message) pair for any exception raised by the pipeline.

    Args:
        error: Exception caught by a caller

    Returns:
        Short label and longer message for display
    """
    if isinstance(error, SpeechError):
        return error.label, error.message
    if isinstance(error, asyncio.CancelledError):
        return CANCELLED_LABEL, _MESSAGES[ErrorKind.CANCELLED](error)
    return "Error", str(error) or type(error).__name__
