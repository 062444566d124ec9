"""OAuth2 device-code flow for linking a Real-Debrid account.

The handshake has three phases: request a device code, poll until the user
approves it and the API issues a per-device client id and secret, then poll
the token endpoint for the access token. A flow object is single-use; once it
reaches a terminal state every further call fails.
"""

import asyncio
import inspect
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..api_clients.errors import (
    ApiError,
    OAuthExpired,
    OAuthFailed,
    OAuthPending,
    OAuthSlowDown,
)
from ..api_clients.http_client import ApiResponse, ResilientHttpClient
from ..config.settings import RealDebridSettings
from ..database.models import Credential
from ..utils.logging import get_logger
from ..utils.timestamps import utcnow


logger = get_logger(__name__)

PENDING_STATUSES = frozenset({400, 401, 403})

# Real-Debrid answers a not-yet-approved device with bad_token (error_code 8)
PENDING_ERROR_CODES = frozenset({"authorization_pending", "bad_token"})
PENDING_NUMERIC_CODES = frozenset({8})


class DeviceAuthState(str, Enum):
    """Device flow states."""
    IDLE = "idle"
    REQUESTING_CODE = "requesting_code"
    AWAITING_CREDENTIALS = "awaiting_credentials"
    POLLING_TOKEN = "polling_token"
    AUTHORIZED = "authorized"
    EXPIRED = "expired"
    FAILED = "failed"


TERMINAL_STATES = frozenset({DeviceAuthState.AUTHORIZED, DeviceAuthState.EXPIRED, DeviceAuthState.FAILED})


@dataclass
class DeviceAuthSession:
    """Device code issued for one authorization attempt."""

    device_code: str
    user_code: str
    verification_url: str
    issued_at: datetime
    expires_in_seconds: int
    poll_interval: float
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    direct_verification_url: Optional[str] = None

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in_seconds)

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) < self.expires_at

    @property
    def has_client_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass
class AuthorizedToken:
    """Successful outcome of the device flow."""

    access_token: str
    refresh_token: Optional[str]
    token_type: str
    expires_in: int
    client_id: str
    client_secret: str

    def to_credential(self, now: Optional[datetime] = None) -> Credential:
        return Credential(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_type=self.token_type,
            expires_at=(now or utcnow()) + timedelta(seconds=self.expires_in),
        )


def format_user_code(user_code: str) -> str:
    """Group a user code in blocks of four for display."""
    cleaned = re.sub(r"[^0-9A-Za-z]", "", user_code or "").upper()
    return "-".join(cleaned[i:i + 4] for i in range(0, len(cleaned), 4))


async def _notify(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class DeviceAuthFlow:
    """Drives one device authorization attempt to a terminal state."""

    def __init__(
        self,
        client: ResilientHttpClient,
        settings: Optional[RealDebridSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = utcnow
    ):
        self.client = client
        self.settings = settings or RealDebridSettings()
        self.max_polling_attempts = self.settings.max_polling_attempts
        self._sleep = sleep
        self._now = now
        self._state = DeviceAuthState.IDLE

    @property
    def state(self) -> DeviceAuthState:
        return self._state

    @property
    def is_finished(self) -> bool:
        return self._state in TERMINAL_STATES

    def _enter(self, expected: DeviceAuthState, new_state: DeviceAuthState) -> None:
        if self._state in TERMINAL_STATES:
            raise OAuthFailed(f"Device authorization already {self._state.value}; start a new flow")
        if self._state != expected:
            raise OAuthFailed(f"Cannot enter {new_state.value} from {self._state.value}")
        self._state = new_state

    def _fail(self, message: str, response: Optional[ApiResponse] = None) -> OAuthFailed:
        self._state = DeviceAuthState.FAILED
        logger.error(
            "Device authorization failed",
            reason=message,
            status=response.status if response else None,
            code=response.error.code if response and response.error else None
        )
        return OAuthFailed(
            message,
            api_error=response.error if response else None,
            status=response.status if response else None
        )

    def _check_expiry(self, session: DeviceAuthSession) -> None:
        if not session.is_valid(self._now()):
            self._state = DeviceAuthState.EXPIRED
            logger.warning("Device code expired", expired_at=session.expires_at.isoformat())
            raise OAuthExpired("Device code expired before the authorization completed")

    # Phase 1

    async def request_device_code(self) -> DeviceAuthSession:
        """Ask the API for a device code and user code."""
        self._enter(DeviceAuthState.IDLE, DeviceAuthState.REQUESTING_CODE)

        response = await self.client.get(
            self.settings.device_code_url,
            params={"client_id": self.settings.client_id, "new_credentials": "yes"},
            authenticate=False
        )
        if not response.success:
            raise self._fail("Failed to request device code", response)

        data = response.data if isinstance(response.data, dict) else {}
        missing = [key for key in ("device_code", "user_code", "verification_url") if not data.get(key)]
        if missing:
            raise self._fail(f"Device code response missing fields: {', '.join(missing)}", response)

        session = DeviceAuthSession(
            device_code=data["device_code"],
            user_code=data["user_code"],
            verification_url=data["verification_url"],
            direct_verification_url=data.get("direct_verification_url"),
            issued_at=self._now(),
            expires_in_seconds=int(data.get("expires_in") or self.settings.device_code_expires_in),
            poll_interval=float(data.get("interval") or self.settings.polling_interval_seconds),
        )
        self._state = DeviceAuthState.AWAITING_CREDENTIALS

        logger.info(
            "Device code issued",
            user_code=session.user_code,
            verification_url=session.verification_url,
            expires_in=session.expires_in_seconds,
            interval=session.poll_interval
        )
        return session

    # Phase 2

    async def await_credentials(
        self,
        session: DeviceAuthSession,
        on_polling: Optional[Callable[[int], Any]] = None
    ) -> DeviceAuthSession:
        """Poll until the user approves and per-device credentials are issued."""
        self._enter(DeviceAuthState.AWAITING_CREDENTIALS, DeviceAuthState.AWAITING_CREDENTIALS)

        for attempt in range(1, self.max_polling_attempts + 1):
            self._check_expiry(session)
            await _notify(on_polling, attempt)

            response = await self.client.get(
                self.settings.credentials_url,
                params={"client_id": self.settings.client_id, "code": session.device_code},
                authenticate=False,
                retries=0
            )

            interval = session.poll_interval
            if response.success:
                data = response.data if isinstance(response.data, dict) else {}
                if data.get("client_id") and data.get("client_secret"):
                    session.client_id = data["client_id"]
                    session.client_secret = data["client_secret"]
                    self._state = DeviceAuthState.POLLING_TOKEN
                    logger.info("Device credentials issued", attempts=attempt)
                    return session
            elif response.status == 429:
                interval = session.poll_interval * 2
            elif response.status not in PENDING_STATUSES and response.status != 0:
                raise self._fail("Credential polling rejected", response)

            logger.debug("Waiting for user approval", attempt=attempt, interval=interval)
            await self._sleep(interval)

        raise self._fail(f"User did not approve the device after {self.max_polling_attempts} attempts")

    # Phase 3

    def _interpret_token_response(self, response: ApiResponse, session: DeviceAuthSession) -> AuthorizedToken:
        """Return the token or raise the signal describing what to do next."""
        if response.success:
            data = response.data if isinstance(response.data, dict) else {}
            if data.get("access_token"):
                return AuthorizedToken(
                    access_token=data["access_token"],
                    refresh_token=data.get("refresh_token"),
                    token_type=data.get("token_type") or "Bearer",
                    expires_in=int(data.get("expires_in") or 3600),
                    client_id=session.client_id or "",
                    client_secret=session.client_secret or "",
                )
            raise OAuthPending("Token response without access token")

        if response.status == 0:
            raise OAuthPending("Transient transport failure", api_error=response.error)
        if response.status == 429:
            raise OAuthSlowDown("Rate limited", api_error=response.error, status=429)

        error = response.error or ApiError.from_response(response.status)
        if 400 <= response.status < 500:
            if error.code == "slow_down":
                raise OAuthSlowDown("Server asked to slow down", api_error=error, status=response.status)
            if error.code in PENDING_ERROR_CODES or error.numeric_code in PENDING_NUMERIC_CODES:
                raise OAuthPending("Authorization pending", api_error=error, status=response.status)

        raise self._fail(f"Token request rejected: {error.message}", response)

    async def poll_token(
        self,
        session: DeviceAuthSession,
        on_polling: Optional[Callable[[int], Any]] = None
    ) -> AuthorizedToken:
        """Exchange the approved device code for an access token."""
        self._enter(DeviceAuthState.POLLING_TOKEN, DeviceAuthState.POLLING_TOKEN)
        if not session.has_client_credentials:
            raise self._fail("Device session has no client credentials")

        form = {
            "client_id": session.client_id,
            "client_secret": session.client_secret,
            "code": session.device_code,
            "grant_type": self.settings.grant_type,
        }

        for attempt in range(1, self.max_polling_attempts + 1):
            self._check_expiry(session)
            await _notify(on_polling, attempt)

            response = await self.client.post(
                self.settings.token_url,
                form=form,
                authenticate=False,
                retries=0
            )

            try:
                token = self._interpret_token_response(response, session)
            except OAuthSlowDown:
                session.poll_interval *= 2
                logger.info("Slowing down token polling", interval=session.poll_interval)
            except OAuthPending:
                pass
            else:
                self._state = DeviceAuthState.AUTHORIZED
                logger.info("Device authorized", attempts=attempt, token_type=token.token_type)
                return token

            await self._sleep(session.poll_interval)

        raise self._fail(f"No token issued after {self.max_polling_attempts} attempts")

    async def run(
        self,
        on_device_code: Optional[Callable[[DeviceAuthSession], Any]] = None,
        on_polling: Optional[Callable[[int], Any]] = None
    ) -> AuthorizedToken:
        """Run all three phases.

        ``on_device_code`` receives the session so the caller can show the
        user code; ``on_polling`` receives the attempt number of each poll.
        """
        try:
            session = await self.request_device_code()
            await _notify(on_device_code, session)
            session = await self.await_credentials(session, on_polling)
            return await self.poll_token(session, on_polling)
        except Exception:
            if not self.is_finished:
                self._state = DeviceAuthState.FAILED
            raise
