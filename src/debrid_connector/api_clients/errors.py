"""Error classification and exception taxonomy for Real-Debrid calls."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..utils.logging import get_logger
from ..utils.timestamps import utcnow


logger = get_logger(__name__)


class ErrorSeverity(str, Enum):
    """How urgently a failure needs attention."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


NETWORK_ERROR = "NETWORK_ERROR"
REQUEST_TIMEOUT = "REQUEST_TIMEOUT"

ERROR_MESSAGES: Dict[str, str] = {
    # HTTP status codes
    "HTTP_400": "Invalid request. Please check your input.",
    "HTTP_401": "Authentication failed. Please reconnect your Real-Debrid account.",
    "HTTP_403": "Access denied. You may need a premium account for this feature.",
    "HTTP_404": "The requested resource was not found.",
    "HTTP_429": "Too many requests. Please wait a moment and try again.",
    "HTTP_500": "Real-Debrid server error. Please try again later.",
    "HTTP_502": "Real-Debrid service is temporarily unavailable.",
    "HTTP_503": "Real-Debrid service is under maintenance.",
    "HTTP_504": "Request timed out. Please try again.",

    # Transport
    NETWORK_ERROR: "Network connection failed. Please check your internet connection.",
    REQUEST_TIMEOUT: "Request timed out. Please try again.",

    # Real-Debrid API codes
    "bad_token": "Your session has expired. Please reconnect your account.",
    "token_expired": "Your session has expired. Please reconnect your account.",
    "no_server": "No server available. Please try again later.",
    "no_file": "File not found or has been removed.",
    "invalid_link": "The provided link is invalid or not supported.",
    "file_too_big": "File is too large for your account type.",
    "hoster_not_supported": "This file hoster is not supported.",
    "premium_needed": "This feature requires a Real-Debrid Premium account.",
    "premium_only": "This feature is only available for Premium users.",
    "quota_exceeded": "Daily quota exceeded. Please try again tomorrow.",
    "magnet_invalid": "The magnet link is invalid.",
    "magnet_conversion": "Failed to convert the magnet link.",
    "torrent_too_big": "Torrent is too large for your account.",
    "torrent_file_invalid": "The torrent file is invalid or corrupted.",
    "torrent_files_selection_required": "Please select which files to download from this torrent.",
}

REAUTH_CODES = frozenset({"bad_token", "token_expired", "HTTP_401"})

RETRYABLE_CODES = frozenset({
    "HTTP_429",
    "HTTP_500",
    "HTTP_502",
    "HTTP_503",
    "HTTP_504",
    NETWORK_ERROR,
    REQUEST_TIMEOUT,
    "no_server",
})

HIGH_SEVERITY_CODES = frozenset({"premium_needed", "premium_only", "quota_exceeded"})

MEDIUM_SEVERITY_CODES = frozenset({"HTTP_429", "HTTP_500", "HTTP_502", "HTTP_503", "HTTP_504"})

REAUTH_ACTION = "Please reconnect your Real-Debrid account"

ERROR_ACTIONS: Dict[str, str] = {
    "premium_needed": "Upgrade to Real-Debrid Premium for this feature",
    "premium_only": "Upgrade to Real-Debrid Premium for this feature",
    "quota_exceeded": "Try again tomorrow or upgrade to Premium",
    "file_too_big": "Please use a smaller file or upgrade to Premium",
    "magnet_invalid": "Please check your magnet link",
    "torrent_files_selection_required": "Please select which files you want to download",
    "HTTP_429": "Please wait a moment and try again",
    NETWORK_ERROR: "Please check your internet connection",
}


@dataclass
class ApiError:
    """A failure reported by the API or by the transport."""

    code: str
    message: str
    details: Optional[Any] = None
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_response(cls, status: int, payload: Any = None) -> "ApiError":
        """Build an error from a non-2xx response body."""
        code = f"HTTP_{status}"
        message = f"HTTP {status}"

        if isinstance(payload, dict):
            if isinstance(payload.get("error"), str) and payload["error"]:
                code = payload["error"]
            message = payload.get("error_message") or payload.get("message") or message
        elif isinstance(payload, str) and payload.strip():
            message = payload.strip()[:200]

        return cls(code=code, message=message, details=payload)

    @classmethod
    def network(cls, exc: BaseException) -> "ApiError":
        return cls(code=NETWORK_ERROR, message=str(exc) or exc.__class__.__name__)

    @classmethod
    def timeout(cls, seconds: float) -> "ApiError":
        return cls(code=REQUEST_TIMEOUT, message=f"Request timed out after {seconds:g}s")

    @property
    def numeric_code(self) -> Optional[int]:
        """The API's numeric ``error_code`` when the body carried one."""
        if isinstance(self.details, dict):
            value = self.details.get("error_code")
            if isinstance(value, int):
                return value
        return None


@dataclass(frozen=True)
class ErrorContext:
    """Classification of an ``ApiError``."""

    code: str
    message: str
    should_retry: bool
    requires_reauth: bool
    action: Optional[str]
    severity: ErrorSeverity


# Exceptions

class DebridError(Exception):
    """Base exception for the connector."""
    pass


class DebridServiceError(DebridError):
    """A remote operation failed after the client's retry policy ran out."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        api_error: Optional[ApiError] = None,
        status: Optional[int] = None
    ):
        super().__init__(message)
        self.context = context
        self.api_error = api_error
        self.status = status

    @property
    def should_retry(self) -> bool:
        return bool(self.context and self.context.should_retry)

    @property
    def requires_reauth(self) -> bool:
        return bool(self.context and self.context.requires_reauth)

    @property
    def severity(self) -> ErrorSeverity:
        return self.context.severity if self.context else ErrorSeverity.LOW

    @property
    def action(self) -> Optional[str]:
        return self.context.action if self.context else None


class NetworkError(DebridServiceError):
    """Transport level failure."""
    pass


class RequestTimeoutError(DebridServiceError):
    """The per-call deadline passed."""
    pass


class HttpClientError(DebridServiceError):
    """A 4xx response."""
    pass


class HttpServerError(DebridServiceError):
    """A 5xx response."""
    pass


class RateLimitExceeded(DebridServiceError):
    """A 429 response."""
    pass


class AuthenticationExpired(DebridServiceError):
    """Credentials are missing, invalid or could not be refreshed."""
    pass


class OAuthError(DebridError):
    """Base exception for the device authorization flow."""

    def __init__(self, message: str, api_error: Optional[ApiError] = None, status: Optional[int] = None):
        super().__init__(message)
        self.api_error = api_error
        self.status = status


class OAuthPending(OAuthError):
    """The user has not approved the device yet."""
    pass


class OAuthSlowDown(OAuthError):
    """The server asked for a longer polling interval."""
    pass


class OAuthExpired(OAuthError):
    """The device code session ran out of time."""
    pass


class OAuthFailed(OAuthError):
    """The authorization was rejected or polling gave up."""
    pass


class SyncError(DebridError):
    """Base exception for sync job control."""
    pass


class SyncConflict(SyncError):
    """A sync job is already running or paused."""
    pass


class SyncCancelled(SyncError):
    """The sync job was cancelled before it finished."""
    pass


class SyncTimeout(SyncError):
    """The job used up its running-time budget."""
    pass


class PersistenceError(DebridError):
    """A store read or write failed."""
    pass


class ErrorClassifier:
    """Maps API error codes to retry, reauth and severity decisions."""

    def classify(self, error: ApiError) -> ErrorContext:
        code = error.code
        return ErrorContext(
            code=code,
            message=self.get_message(error),
            should_retry=code in RETRYABLE_CODES,
            requires_reauth=code in REAUTH_CODES,
            action=self.get_action(code),
            severity=self.get_severity(code),
        )

    def get_message(self, error: ApiError) -> str:
        return ERROR_MESSAGES.get(error.code) or error.message or "An unexpected error occurred."

    def get_action(self, code: str) -> Optional[str]:
        if code in REAUTH_CODES:
            return REAUTH_ACTION
        return ERROR_ACTIONS.get(code)

    def get_severity(self, code: str) -> ErrorSeverity:
        if code in REAUTH_CODES:
            return ErrorSeverity.CRITICAL
        if code in HIGH_SEVERITY_CODES:
            return ErrorSeverity.HIGH
        if code in MEDIUM_SEVERITY_CODES:
            return ErrorSeverity.MEDIUM
        return ErrorSeverity.LOW

    def exception_for(
        self,
        error: ApiError,
        status: Optional[int] = None,
        context: Optional[ErrorContext] = None
    ) -> DebridServiceError:
        """Pick the exception class that matches a failed call."""
        context = context or self.classify(error)
        status = status or 0

        if error.code == REQUEST_TIMEOUT:
            exc_class = RequestTimeoutError
        elif error.code == NETWORK_ERROR:
            exc_class = NetworkError
        elif context.requires_reauth:
            exc_class = AuthenticationExpired
        elif status == 429 or error.code == "HTTP_429":
            exc_class = RateLimitExceeded
        elif status >= 500:
            exc_class = HttpServerError
        elif status >= 400:
            exc_class = HttpClientError
        else:
            exc_class = DebridServiceError

        return exc_class(context.message, context=context, api_error=error, status=status or None)

    def log_error(self, error: ApiError, context: Optional[ErrorContext] = None, **extra: Any) -> None:
        context = context or self.classify(error)
        fields = dict(
            code=error.code,
            error=error.message,
            severity=context.severity.value,
            should_retry=context.should_retry,
            requires_reauth=context.requires_reauth,
            **extra
        )

        if context.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.HIGH):
            logger.error("Real-Debrid API error", **fields)
        elif context.severity == ErrorSeverity.MEDIUM:
            logger.warning("Real-Debrid API error", **fields)
        else:
            logger.info("Real-Debrid API error", **fields)
