"""Connector orchestrating account linking, connection status and file sync."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

import aiohttp

from .sync_engine import SyncEngine, SyncStatus
from ..api_clients.debrid_service import DebridService
from ..api_clients.errors import DebridServiceError, ErrorSeverity, PersistenceError
from ..api_clients.http_client import ResilientHttpClient
from ..api_clients.models import UserInfo
from ..api_clients.rate_limiter import TokenBucketRateLimiter
from ..auth.device_flow import DeviceAuthFlow, DeviceAuthSession
from ..config.schema import SyncConfiguration
from ..config.settings import AppSettings, get_settings
from ..database.models import Credential
from ..database.stores import CredentialStore, FileIndexStore
from ..scheduler.auto_sync import AutoSyncScheduler
from ..utils.logging import get_logger, log_async_execution_time
from ..utils.timestamps import utcnow


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    EXPIRED = "expired"
    ERROR = "error"


class ApiHealth(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class ConnectionIssue:
    code: str
    message: str
    severity: ErrorSeverity
    action: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class ConnectionStatus:
    """Snapshot of an account link and of the API's reachability."""

    state: ConnectionState
    user: Optional[UserInfo] = None
    token_expiry: Optional[datetime] = None
    last_sync: Optional[datetime] = None
    api_health: ApiHealth = ApiHealth.UNKNOWN
    error: Optional[ConnectionIssue] = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED


class DebridConnector:
    """Wires the Real-Debrid client, device flow, sync engine and scheduler for one account."""

    def __init__(
        self,
        account_id: str,
        credential_store: CredentialStore,
        file_store: FileIndexStore,
        settings: Optional[AppSettings] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize the connector.

        Args:
            account_id: Account whose credential and files are managed
            credential_store: Store holding the OAuth credential
            file_store: Store holding the local file index
            settings: Application settings, defaults to ``get_settings()``
            session: Optional shared aiohttp session
        """
        self.account_id = account_id
        self.credential_store = credential_store
        self.file_store = file_store
        self.settings = settings or get_settings()
        self.logger = get_logger(self.__class__.__name__)

        self.rate_limiter = TokenBucketRateLimiter(self.settings.http.rate_limit_config())
        self.client = ResilientHttpClient.from_settings(
            self.settings,
            self.rate_limiter,
            credential_store=credential_store,
            account_id=account_id,
            session=session
        )
        self.service = DebridService(self.client)
        self.sync_engine = SyncEngine(
            self.service,
            file_store,
            configuration=self.settings.sync.to_configuration(),
            batch_pause_seconds=self.settings.sync.batch_pause_seconds
        )
        self.scheduler = AutoSyncScheduler(self.sync_engine, account_id)

        self.logger.info("Debrid connector initialized", account_id=account_id)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def create_device_flow(self) -> DeviceAuthFlow:
        """A new flow object; each link attempt uses its own."""
        return DeviceAuthFlow(self.client, self.settings.realdebrid)

    # Account linking

    @log_async_execution_time
    async def link_account(
        self,
        on_device_code: Optional[Callable[[DeviceAuthSession], Any]] = None,
        on_polling: Optional[Callable[[int], Any]] = None
    ) -> Credential:
        """Run the device flow and persist the resulting credential.

        Raises:
            OAuthError: the flow expired or failed
            PersistenceError: the credential could not be stored
        """
        self.logger.info("Linking Real-Debrid account", account_id=self.account_id)

        token = await self.create_device_flow().run(on_device_code, on_polling)
        credential = token.to_credential()
        credential_id = await self.credential_store.upsert_credential(self.account_id, credential)
        self.client.clear_cached_token()

        self.logger.info(
            "Real-Debrid account linked",
            account_id=self.account_id,
            credential_id=credential_id,
            expires_at=credential.expires_at.isoformat()
        )
        return credential.model_copy(update={"id": credential_id})

    async def disconnect(self) -> None:
        """Forget the stored credential and the cached token."""
        self.sync_engine.cancel_sync()
        await self.credential_store.clear_credential(self.account_id)
        self.client.clear_cached_token()
        self.logger.info("Real-Debrid account disconnected", account_id=self.account_id)

    @log_async_execution_time
    async def get_connection_status(self) -> ConnectionStatus:
        try:
            credential = await self.credential_store.get_latest_credential(self.account_id)
            last_sync = await self.file_store.get_last_sync_timestamp(self.account_id)
        except PersistenceError as e:
            self.logger.error("Failed to read connection state", account_id=self.account_id, error=str(e))
            return ConnectionStatus(
                state=ConnectionState.ERROR,
                error=ConnectionIssue(
                    code="CONNECTION_STATUS_ERROR",
                    message=str(e),
                    severity=ErrorSeverity.CRITICAL,
                    action="Retry in a few minutes."
                )
            )

        if credential is None:
            return ConnectionStatus(state=ConnectionState.DISCONNECTED, last_sync=last_sync)

        state = ConnectionState.EXPIRED if credential.expires_at <= utcnow() else ConnectionState.CONNECTED
        user: Optional[UserInfo] = None
        issue: Optional[ConnectionIssue] = None

        try:
            user = await self.service.get_user_info()
            # The client refreshes an expired token on demand
            state = ConnectionState.CONNECTED
        except DebridServiceError as e:
            code = e.context.code if e.context else "USER_INFO_FAILED"
            issue = ConnectionIssue(
                code=code,
                message=e.context.message if e.context else str(e),
                severity=ErrorSeverity.HIGH,
                action=e.action or "Reconnect your Real-Debrid account."
            )
            if e.requires_reauth:
                state = ConnectionState.EXPIRED
            elif state != ConnectionState.EXPIRED:
                state = ConnectionState.ERROR

        healthy = await self.service.health_check()
        if healthy:
            api_health = ApiHealth.HEALTHY
        elif user is not None:
            api_health = ApiHealth.DEGRADED
        else:
            api_health = ApiHealth.UNHEALTHY

        if not healthy and issue is None:
            issue = ConnectionIssue(
                code="API_UNHEALTHY",
                message="Real-Debrid API is not responding as expected",
                severity=ErrorSeverity.MEDIUM,
                action="Retry in a few minutes."
            )

        return ConnectionStatus(
            state=state,
            user=user,
            token_expiry=credential.expires_at,
            last_sync=last_sync,
            api_health=api_health,
            error=issue
        )

    # Sync

    async def start_sync(self, overrides: Optional[Dict[str, Any]] = None) -> SyncStatus:
        return await self.sync_engine.start_sync(self.account_id, overrides)

    def pause_sync(self) -> bool:
        return self.sync_engine.pause_sync()

    def resume_sync(self) -> bool:
        return self.sync_engine.resume_sync()

    def cancel_sync(self) -> bool:
        return self.sync_engine.cancel_sync()

    def get_sync_status(self) -> SyncStatus:
        return self.sync_engine.get_status()

    def update_sync_configuration(self, changes: Dict[str, Any]) -> SyncConfiguration:
        """Apply configuration changes and re-apply the auto-sync schedule."""
        configuration = self.sync_engine.update_configuration(changes)
        if self.scheduler.running:
            self.scheduler.reschedule()
        return configuration

    def start_scheduler(self) -> None:
        self.scheduler.start()

    async def close(self) -> None:
        self.scheduler.stop()
        self.sync_engine.cancel_sync()
        await self.client.close()
        self.logger.info("Debrid connector closed", account_id=self.account_id)
