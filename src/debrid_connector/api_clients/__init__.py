"""API clients package for the Real-Debrid integration."""

from .errors import (
    ApiError,
    ErrorClassifier,
    ErrorContext,
    ErrorSeverity,
    DebridError,
    DebridServiceError,
    NetworkError,
    RequestTimeoutError,
    HttpClientError,
    HttpServerError,
    RateLimitExceeded,
    AuthenticationExpired,
    OAuthError,
    OAuthPending,
    OAuthSlowDown,
    OAuthExpired,
    OAuthFailed,
    SyncConflict,
    SyncCancelled,
    SyncTimeout,
    PersistenceError
)

from .rate_limiter import TokenBucketRateLimiter, RateLimitSnapshot
from .models import Download, RemoteFile, Stream, Torrent, TorrentFile, UserInfo
from .http_client import ApiResponse, ResilientHttpClient, compute_backoff, build_request_key
from .debrid_service import DebridService

__all__ = [
    # Errors
    "ApiError",
    "ErrorClassifier",
    "ErrorContext",
    "ErrorSeverity",
    "DebridError",
    "DebridServiceError",
    "NetworkError",
    "RequestTimeoutError",
    "HttpClientError",
    "HttpServerError",
    "RateLimitExceeded",
    "AuthenticationExpired",
    "OAuthError",
    "OAuthPending",
    "OAuthSlowDown",
    "OAuthExpired",
    "OAuthFailed",
    "SyncConflict",
    "SyncCancelled",
    "SyncTimeout",
    "PersistenceError",

    # Rate limiting
    "TokenBucketRateLimiter",
    "RateLimitSnapshot",

    # Records
    "Download",
    "RemoteFile",
    "Stream",
    "Torrent",
    "TorrentFile",
    "UserInfo",

    # Clients
    "ApiResponse",
    "ResilientHttpClient",
    "compute_backoff",
    "build_request_key",
    "DebridService"
]
