"""Supabase-backed credential and file index store."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import create_client, Client
from postgrest.exceptions import APIError
from pydantic import ValidationError

from .models import Credential, FileIndexEntry, StoredRemoteId, SyncRunRecord
from ..api_clients.errors import PersistenceError
from ..api_clients.models import RemoteFile
from ..config.settings import SupabaseSettings
from ..utils.logging import get_logger
from ..utils.timestamps import parse_timestamp, utcnow

logger = get_logger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class SupabaseStore:
    """Implements ``CredentialStore`` and ``FileIndexStore`` on Supabase tables.

    Tables: ``oauth_tokens`` and ``files`` keyed by ``user_id``, plus
    ``sync_state`` and ``sync_runs`` for sync bookkeeping.
    """

    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_settings(cls, settings: SupabaseSettings) -> "SupabaseStore":
        if not settings.is_configured:
            raise PersistenceError("Supabase credentials not configured")
        client = create_client(settings.url, settings.service_role_key or settings.anon_key)
        logger.info("Supabase store initialized", url=settings.url)
        return cls(client)

    def _execute(self, operation: str, query) -> Any:
        try:
            return query.execute()
        except APIError as e:
            logger.error("Supabase operation failed", operation=operation, error=e.message, code=e.code)
            raise PersistenceError(f"{operation} failed: {e.message}") from e

    @staticmethod
    def _file_row(file: RemoteFile) -> Dict[str, Any]:
        return {
            "real_debrid_id": file.id,
            "original_filename": file.name,
            "file_size": file.size,
            "mime_type": file.mime_type,
            "sha1_hash": file.hash or None,
            "download_url": file.download_url,
            "remote_created_at": _iso(file.created_at),
            "updated_at": _iso(file.modified_at or utcnow()),
        }

    # Credential store

    async def get_latest_credential(self, account_id: str) -> Optional[Credential]:
        result = self._execute(
            "get_latest_credential",
            self.client.table("oauth_tokens")
            .select("*")
            .eq("user_id", account_id)
            .order("updated_at", desc=True)
            .limit(1)
        )
        if not result.data:
            return None

        row = result.data[0]
        try:
            return Credential(
                id=row.get("id"),
                access_token=row["access_token"],
                refresh_token=row.get("refresh_token"),
                client_id=row.get("client_id"),
                client_secret=row.get("client_secret") or "",
                token_type=row.get("token_type") or "Bearer",
                expires_at=parse_timestamp(row.get("expires_at")),
            )
        except (KeyError, ValidationError) as e:
            logger.error("Invalid credential row", account_id=account_id, error=str(e))
            raise PersistenceError(f"Invalid credential row for {account_id}") from e

    async def upsert_credential(self, account_id: str, credential: Credential) -> str:
        payload = {
            "user_id": account_id,
            "access_token": credential.access_token,
            "refresh_token": credential.refresh_token,
            "client_id": credential.client_id,
            "client_secret": credential.client_secret,
            "token_type": credential.token_type,
            "expires_at": credential.expires_at.isoformat(),
            "updated_at": utcnow().isoformat(),
        }

        existing = self._execute(
            "upsert_credential",
            self.client.table("oauth_tokens").select("id").eq("user_id", account_id).limit(1)
        )
        if existing.data:
            row_id = existing.data[0]["id"]
            self._execute(
                "upsert_credential",
                self.client.table("oauth_tokens").update(payload).eq("id", row_id)
            )
        else:
            result = self._execute("upsert_credential", self.client.table("oauth_tokens").insert(payload))
            if not result.data:
                raise PersistenceError("No data returned from credential insert")
            row_id = result.data[0]["id"]

        logger.info("Credential stored", account_id=account_id, credential_id=row_id)
        return str(row_id)

    async def clear_credential(self, account_id: str) -> None:
        self._execute(
            "clear_credential",
            self.client.table("oauth_tokens").delete().eq("user_id", account_id)
        )
        logger.info("Credential cleared", account_id=account_id)

    # File index store

    async def list_file_index(self, account_id: str) -> List[FileIndexEntry]:
        result = self._execute(
            "list_file_index",
            self.client.table("files").select("id, real_debrid_id, sha1_hash").eq("user_id", account_id)
        )
        return [
            FileIndexEntry(local_id=row["id"], remote_id=row.get("real_debrid_id"), hash=row.get("sha1_hash"))
            for row in result.data or []
        ]

    async def insert_file(self, account_id: str, file: RemoteFile) -> Optional[str]:
        row = {"user_id": account_id, **self._file_row(file)}
        try:
            result = self._execute("insert_file", self.client.table("files").insert(row))
        except PersistenceError:
            return None
        if not result.data:
            logger.warning("No data returned from file insert", remote_id=file.id)
            return None
        return str(result.data[0]["id"])

    async def update_file(self, local_id: str, file: RemoteFile) -> bool:
        try:
            result = self._execute(
                "update_file",
                self.client.table("files").update(self._file_row(file)).eq("id", local_id)
            )
        except PersistenceError:
            return False
        return bool(result.data)

    async def delete_file(self, local_id: str) -> bool:
        try:
            result = self._execute("delete_file", self.client.table("files").delete().eq("id", local_id))
        except PersistenceError:
            return False
        return bool(result.data)

    async def list_stored_remote_ids(self, account_id: str) -> List[StoredRemoteId]:
        result = self._execute(
            "list_stored_remote_ids",
            self.client.table("files").select("id, real_debrid_id").eq("user_id", account_id)
        )
        return [
            StoredRemoteId(local_id=row["id"], remote_id=row.get("real_debrid_id"))
            for row in result.data or []
        ]

    async def get_last_sync_timestamp(self, account_id: str) -> Optional[datetime]:
        result = self._execute(
            "get_last_sync_timestamp",
            self.client.table("sync_state").select("last_sync_at").eq("user_id", account_id).limit(1)
        )
        if not result.data:
            return None
        return parse_timestamp(result.data[0].get("last_sync_at"))

    async def set_last_sync_timestamp(self, account_id: str, timestamp: datetime) -> None:
        self._execute(
            "set_last_sync_timestamp",
            self.client.table("sync_state").upsert(
                {"user_id": account_id, "last_sync_at": timestamp.isoformat()},
                on_conflict="user_id"
            )
        )

    async def record_sync_run(self, account_id: str, run: SyncRunRecord) -> None:
        self._execute(
            "record_sync_run",
            self.client.table("sync_runs").insert({
                "user_id": account_id,
                "job_id": run.job_id,
                "status": run.status,
                "started_at": _iso(run.started_at),
                "ended_at": _iso(run.ended_at),
                "files_processed": run.files_processed,
                "files_added": run.files_added,
                "files_updated": run.files_updated,
                "files_deleted": run.files_deleted,
                "duplicates_found": run.duplicates_found,
                "error_count": len(run.errors),
                "error_message": run.error_message,
                "duration_seconds": run.duration_seconds,
            })
        )
