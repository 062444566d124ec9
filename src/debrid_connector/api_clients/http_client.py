"""Resilient HTTP client for the Real-Debrid REST API.

Every call goes through the shared token bucket, carries a bearer token that
is refreshed on demand, and is retried with exponential backoff on 429, 5xx
and transport failures. Identical concurrent requests share one network call.
Ordinary API failures come back as an unsuccessful ``ApiResponse``.
"""

import asyncio
import json
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode

import aiohttp

from .errors import (
    ApiError,
    AuthenticationExpired,
    DebridServiceError,
    ErrorClassifier,
    NETWORK_ERROR,
    PersistenceError,
)
from .rate_limiter import RateLimitSnapshot, TokenBucketRateLimiter
from ..config.schema import RetryConfig
from ..config.settings import AppSettings
from ..database.models import Credential
from ..database.stores import CredentialStore
from ..utils.logging import get_logger
from ..utils.timestamps import utcnow


logger = get_logger(__name__)


@dataclass
class ApiResponse:
    """Outcome of a request after retries."""

    success: bool
    status: int = 0
    data: Any = None
    error: Optional[ApiError] = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class CachedToken:
    token: str
    expires_at: datetime


def compute_backoff(
    attempt: int,
    config: RetryConfig,
    uniform: Callable[[float, float], float] = random.uniform
) -> float:
    """Delay before retry number ``attempt + 1``; never above ``config.max_delay``."""
    try:
        delay = config.base_delay * (config.backoff_factor ** attempt)
    except OverflowError:
        delay = config.max_delay
    delay = min(delay, config.max_delay)
    if config.jitter:
        delay *= uniform(0.5, 1.0)
    return min(delay, config.max_delay)


def build_request_key(
    method: str,
    url: str,
    params: Optional[Dict[str, str]] = None,
    payload: Any = None
) -> str:
    """Deterministic key for coalescing identical in-flight requests."""
    query = urlencode(sorted((params or {}).items()))
    target = f"{url}?{query}" if query else url
    body = json.dumps(payload, sort_keys=True, default=str) if payload is not None else ""
    return f"{method.upper()}:{target}:{body}"


class ResilientHttpClient:
    """Rate limited, retrying, deduplicating API client for one account."""

    def __init__(
        self,
        base_url: str,
        rate_limiter: TokenBucketRateLimiter,
        credential_store: Optional[CredentialStore] = None,
        account_id: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        token_url: str = "https://api.real-debrid.com/oauth/v2/token",
        client_id: str = "X245A4XAIBGVM",
        grant_type: str = "http://oauth.net/grant_type/device/1.0",
        timeout: float = 10.0,
        expiry_threshold: float = 60.0,
        user_agent: str = "debrid-connector/1.0",
        session: Optional[aiohttp.ClientSession] = None,
        classifier: Optional[ErrorClassifier] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
        now: Callable[[], datetime] = utcnow
    ):
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.credential_store = credential_store
        self.account_id = account_id
        self.retry_config = retry_config or RetryConfig()
        self.token_url = token_url
        self.client_id = client_id
        self.grant_type = grant_type
        self.timeout = timeout
        self.expiry_threshold = timedelta(seconds=expiry_threshold)
        self.user_agent = user_agent
        self.classifier = classifier or ErrorClassifier()

        self._session = session
        self._owns_session = session is None
        self._sleep = sleep
        self._uniform = uniform
        self._now = now

        self._cached_token: Optional[CachedToken] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._in_flight: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        rate_limiter: TokenBucketRateLimiter,
        credential_store: Optional[CredentialStore] = None,
        account_id: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None
    ) -> "ResilientHttpClient":
        return cls(
            base_url=settings.realdebrid.api_base_url,
            rate_limiter=rate_limiter,
            credential_store=credential_store,
            account_id=account_id,
            retry_config=settings.http.retry_config(),
            token_url=settings.realdebrid.token_url,
            client_id=settings.realdebrid.client_id,
            grant_type=settings.realdebrid.grant_type,
            timeout=settings.http.timeout_seconds,
            expiry_threshold=settings.http.token_expiry_threshold_seconds,
            user_agent=settings.realdebrid.user_agent,
            session=session,
        )

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=20, ttl_dns_cache=300)
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.user_agent},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if not self._owns_session:
            return
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    # Public request API

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        form: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        skip_rate_limit: bool = False,
        authenticate: bool = True
    ) -> ApiResponse:
        """Send a request, sharing the result with identical calls in flight."""
        method = method.upper()
        url = self._build_url(endpoint)
        query = {k: str(v) for k, v in (params or {}).items() if v is not None}
        key = build_request_key(method, url, query, body if body is not None else form)

        task = self._in_flight.get(key)
        if task is None or task.done():
            task = asyncio.create_task(
                self._execute(
                    method, url, headers or {}, query, body, form,
                    timeout if timeout is not None else self.timeout,
                    self.retry_config.max_retries if retries is None else retries,
                    skip_rate_limit, authenticate
                )
            )
            self._in_flight[key] = task
            task.add_done_callback(lambda done, key=key: self._release(key, done))
        else:
            logger.debug("Joining in-flight request", method=method, url=url)

        return await asyncio.shield(task)

    async def get(self, endpoint: str, **kwargs) -> ApiResponse:
        return await self.request(endpoint, method="GET", **kwargs)

    async def post(self, endpoint: str, **kwargs) -> ApiResponse:
        return await self.request(endpoint, method="POST", **kwargs)

    async def put(self, endpoint: str, **kwargs) -> ApiResponse:
        return await self.request(endpoint, method="PUT", **kwargs)

    async def patch(self, endpoint: str, **kwargs) -> ApiResponse:
        return await self.request(endpoint, method="PATCH", **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> ApiResponse:
        return await self.request(endpoint, method="DELETE", **kwargs)

    def rate_limit_snapshot(self) -> RateLimitSnapshot:
        return self.rate_limiter.snapshot()

    def clear_cached_token(self) -> None:
        self._cached_token = None

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    # Internals

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    def _build_url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def _execute(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        params: Dict[str, str],
        body: Any,
        form: Optional[Dict[str, Any]],
        timeout: float,
        retries: int,
        skip_rate_limit: bool,
        authenticate: bool
    ) -> ApiResponse:
        attempts = max(0, retries) + 1
        last_error: Optional[ApiError] = None
        last_status = 0

        for attempt in range(attempts):
            if not skip_rate_limit:
                await self.rate_limiter.acquire()

            request_headers = {"Accept": "application/json", **headers}

            try:
                if authenticate:
                    token = await self.get_access_token()
                    request_headers["Authorization"] = f"Bearer {token}"

                status, data, response_headers = await self._send(
                    method, url, request_headers, params, body, form, timeout
                )
            except DebridServiceError as e:
                last_error = e.api_error or ApiError(code=NETWORK_ERROR, message=str(e))
                last_status = e.status or 0
                if not e.should_retry:
                    return ApiResponse(success=False, status=last_status, error=last_error)
            except asyncio.TimeoutError:
                last_error = ApiError.timeout(timeout)
                last_status = 0
            except aiohttp.ClientError as e:
                last_error = ApiError.network(e)
                last_status = 0
            else:
                if 200 <= status < 300:
                    return ApiResponse(success=True, status=status, data=data, headers=response_headers)

                last_error = ApiError.from_response(status, data)
                last_status = status

                if status == 401 and authenticate:
                    self.clear_cached_token()

                if status != 429 and status < 500:
                    logger.info(
                        "Request failed",
                        method=method,
                        url=url,
                        status=status,
                        code=last_error.code
                    )
                    return ApiResponse(
                        success=False,
                        status=status,
                        data=data,
                        error=last_error,
                        headers=response_headers
                    )

            if attempt < attempts - 1:
                delay = compute_backoff(attempt, self.retry_config, self._uniform)
                logger.warning(
                    "Retrying request",
                    method=method,
                    url=url,
                    attempt=attempt + 1,
                    status=last_status,
                    code=last_error.code if last_error else None,
                    delay=round(delay, 3)
                )
                await self._sleep(delay)

        logger.error(
            "Request failed after retries",
            method=method,
            url=url,
            attempts=attempts,
            status=last_status,
            code=last_error.code if last_error else None
        )
        return ApiResponse(success=False, status=last_status, error=last_error)

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, str]],
        body: Any,
        form: Optional[Dict[str, Any]],
        timeout: float
    ) -> Tuple[int, Any, Dict[str, str]]:
        """Issue one network call and return ``(status, payload, headers)``."""
        session = await self._get_session()
        kwargs: Dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = body
        elif form is not None:
            kwargs["data"] = form

        async with session.request(
            method,
            url,
            headers=headers,
            params=params or None,
            timeout=aiohttp.ClientTimeout(total=timeout),
            **kwargs
        ) as response:
            text = await response.text()
            return response.status, self._decode(text), dict(response.headers)

    @staticmethod
    def _decode(text: str) -> Any:
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text

    # Credentials

    def _is_fresh(self, expires_at: datetime) -> bool:
        return expires_at - self._now() > self.expiry_threshold

    def _cached_if_fresh(self) -> Optional[str]:
        if self._cached_token and self._is_fresh(self._cached_token.expires_at):
            return self._cached_token.token
        return None

    def _cache(self, credential: Credential) -> str:
        self._cached_token = CachedToken(token=credential.access_token, expires_at=credential.expires_at)
        return credential.access_token

    def _auth_failure(self, code: str, message: str) -> AuthenticationExpired:
        error = ApiError(code=code, message=message)
        return self.classifier.exception_for(error, status=0)

    async def get_access_token(self) -> str:
        """Return a bearer token valid for at least the expiry threshold."""
        token = self._cached_if_fresh()
        if token:
            return token

        if self.credential_store is None or self.account_id is None:
            raise self._auth_failure("bad_token", "No credential store configured")

        credential = await self.credential_store.get_latest_credential(self.account_id)

        # A concurrent refresh may have finished while the store was read
        token = self._cached_if_fresh()
        if token:
            return token

        if credential is None:
            raise self._auth_failure("bad_token", "No Real-Debrid credential linked")

        if self._is_fresh(credential.expires_at):
            return self._cache(credential)

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh(credential))
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self, credential: Credential) -> str:
        if not credential.refresh_token:
            raise self._auth_failure("token_expired", "Access token expired and no refresh token is stored")

        form = {
            "client_id": credential.client_id or self.client_id,
            "client_secret": credential.client_secret,
            "code": credential.refresh_token,
            "grant_type": self.grant_type,
        }

        logger.info("Refreshing access token", account_id=self.account_id)

        try:
            status, data, _ = await self._send(
                "POST", self.token_url, {"Accept": "application/json"}, None, None, form, self.timeout
            )
        except asyncio.TimeoutError:
            raise self.classifier.exception_for(ApiError.timeout(self.timeout))
        except aiohttp.ClientError as e:
            raise self.classifier.exception_for(ApiError.network(e))

        if not (200 <= status < 300) or not isinstance(data, dict) or not data.get("access_token"):
            error = ApiError.from_response(status, data)
            logger.error("Token refresh failed", account_id=self.account_id, status=status, code=error.code)
            raise self._auth_failure("token_expired", f"Token refresh failed: {error.message}")

        refreshed = credential.model_copy(update={
            "access_token": data["access_token"],
            "refresh_token": data.get("refresh_token") or credential.refresh_token,
            "token_type": data.get("token_type") or credential.token_type,
            "expires_at": self._now() + timedelta(seconds=int(data.get("expires_in") or 3600)),
        })

        try:
            await self.credential_store.upsert_credential(self.account_id, refreshed)
        except PersistenceError as e:
            logger.error("Failed to store refreshed credential", account_id=self.account_id, error=str(e))

        logger.info("Access token refreshed", account_id=self.account_id, expires_at=refreshed.expires_at.isoformat())
        return self._cache(refreshed)
