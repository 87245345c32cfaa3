"""Provider error taxonomy.

Every adapter raises ProviderError with one of the ErrorKind values below,
so callers can decide on retry/backoff without knowing the upstream dialect.
"""

from enum import Enum
from typing import Optional

import httpx


class ErrorKind(str, Enum):
    NO_API_KEY = "NO_API_KEY"
    NO_NUMBERS_AVAILABLE = "NO_NUMBERS_AVAILABLE"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    INVALID_API_KEY = "INVALID_API_KEY"
    ACCESS_FORBIDDEN = "ACCESS_FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    UNEXPECTED_RESPONSE = "UNEXPECTED_RESPONSE"
    API_ERROR = "API_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# Terminal per call: retrying cannot change the outcome.
NON_RETRYABLE = frozenset({
    ErrorKind.NO_API_KEY,
    ErrorKind.INVALID_API_KEY,
    ErrorKind.ACCESS_FORBIDDEN,
    ErrorKind.NOT_FOUND,
    ErrorKind.NO_NUMBERS_AVAILABLE,
    ErrorKind.PRODUCT_NOT_FOUND,
})

# Rejected requests: resending the same payload gets the same answer.
TERMINAL_STATUSES = frozenset({400, 401, 403, 404, 422})

# Plain-text error tokens returned by handler_api.php style providers
# (SMS-Activate, GoGetSMS).
TOKEN_KINDS = {
    "BAD_KEY": ErrorKind.INVALID_API_KEY,
    "NOT_AUTHORIZED": ErrorKind.ACCESS_FORBIDDEN,
    "BANNED": ErrorKind.ACCESS_FORBIDDEN,
    "ACCOUNT_BLOCKED": ErrorKind.ACCESS_FORBIDDEN,
    "NO_NUMBERS": ErrorKind.NO_NUMBERS_AVAILABLE,
    "NO_BALANCE": ErrorKind.API_ERROR,
    "NOT_ENOUGH_FUNDS": ErrorKind.API_ERROR,
    "BAD_ACTION": ErrorKind.API_ERROR,
    "BAD_SERVICE": ErrorKind.PRODUCT_NOT_FOUND,
    "BAD_COUNTRY": ErrorKind.PRODUCT_NOT_FOUND,
    "NO_ACTIVATION": ErrorKind.NOT_FOUND,
    "NO_ID_RENT": ErrorKind.NOT_FOUND,
    "INVALID_PHONE": ErrorKind.NOT_FOUND,
    "STATUS_FINISH": ErrorKind.API_ERROR,
    "STATUS_CANCEL": ErrorKind.API_ERROR,
    "EARLY_CANCEL_DENIED": ErrorKind.API_ERROR,
    "SERVICE_NOT_AVAILABLE": ErrorKind.SERVER_ERROR,
}

TOKEN_MESSAGES = {
    "BAD_KEY": "Invalid API key",
    "NOT_AUTHORIZED": "API key not authorized or insufficient permissions",
    "BANNED": "Account is banned",
    "ACCOUNT_BLOCKED": "Account is blocked",
    "NO_NUMBERS": "No phone numbers available for this service/country",
    "NO_BALANCE": "Insufficient balance",
    "NOT_ENOUGH_FUNDS": "Insufficient balance",
    "BAD_ACTION": "Invalid action parameter",
    "BAD_SERVICE": "Invalid service parameter",
    "BAD_COUNTRY": "Invalid country parameter",
    "NO_ACTIVATION": "Activation not found",
    "EARLY_CANCEL_DENIED": "Cannot cancel rental yet",
    "SERVICE_NOT_AVAILABLE": "Service temporarily unavailable",
}


class ProviderError(Exception):
    """Typed failure raised by provider adapters."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        upstream_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.upstream_code = upstream_code

    @property
    def retryable(self) -> bool:
        if self.status_code in TERMINAL_STATUSES:
            return False
        return self.kind not in NON_RETRYABLE

    def __str__(self) -> str:
        prefix = f"[{self.provider}] " if self.provider else ""
        return f"{prefix}{self.kind.value}: {self.message}"

    def __repr__(self) -> str:
        return f"ProviderError(kind={self.kind.value!r}, provider={self.provider!r}, message={self.message!r})"


class ResolveError(ProviderError):
    """A booking could not be matched to a stored phone number."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(ErrorKind.NOT_FOUND, message, provider=provider)


def kind_for_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code to an error kind."""
    if status_code == 401:
        return ErrorKind.INVALID_API_KEY
    if status_code == 403:
        return ErrorKind.ACCESS_FORBIDDEN
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.API_ERROR


def classify_token(token: str, provider: Optional[str] = None) -> Optional[ProviderError]:
    """Turn a plain-text handler API token (e.g. "BAD_KEY") into an error.

    Returns None when the text is not a known error token.
    """
    code = (token or "").strip().upper()
    # Tokens may carry a payload after a colon, e.g. "BAD_SERVICE:wa"
    head = code.split(":", 1)[0]
    if head not in TOKEN_KINDS:
        return None
    message = TOKEN_MESSAGES.get(head, f"API returned error: {token.strip()}")
    return ProviderError(TOKEN_KINDS[head], message, provider=provider, upstream_code=head)


def classify_http_error(exc: BaseException, provider: Optional[str] = None) -> ProviderError:
    """Classify any exception from an upstream call into a ProviderError."""
    if isinstance(exc, ProviderError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = ""
        try:
            body = exc.response.text.strip()
        except (httpx.ResponseNotRead, UnicodeDecodeError):
            pass
        token_error = classify_token(body, provider) if body else None
        if token_error is not None:
            token_error.status_code = status
            return token_error
        kind = kind_for_status(status)
        message = f"HTTP {status}"
        if body:
            message = f"{message}: {body[:200]}"
        return ProviderError(kind, message, provider=provider, status_code=status, upstream_code=f"HTTP_{status}")

    if isinstance(exc, httpx.TimeoutException):
        return ProviderError(ErrorKind.TIMEOUT, f"Request timed out: {exc}", provider=provider)

    if isinstance(exc, (httpx.ConnectError, httpx.RemoteProtocolError, httpx.NetworkError)):
        return ProviderError(ErrorKind.CONNECTION_ERROR, f"Connection failed: {exc}", provider=provider)

    if isinstance(exc, ValueError):
        # json decode errors
        return ProviderError(ErrorKind.UNEXPECTED_RESPONSE, f"Unparseable response: {exc}", provider=provider)

    return ProviderError(ErrorKind.UNKNOWN_ERROR, str(exc) or exc.__class__.__name__, provider=provider)


def is_already_inactive(error: ProviderError) -> bool:
    """Whether a failed cancel means the rental is already gone upstream.

    NOT_AUTHORIZED tokens, HTTP 400 and any "not active" wording all count.
    """
    if error.upstream_code in ("NOT_AUTHORIZED", "HTTP_400"):
        return True
    if error.status_code == 400:
        return True
    return "not active" in (error.message or "").lower()
