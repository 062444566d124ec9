"""Storage contracts consumed by the HTTP client and the sync engine."""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Protocol, runtime_checkable

from .models import Credential, FileIndexEntry, StoredRemoteId, SyncRunRecord

if TYPE_CHECKING:
    from ..api_clients.models import RemoteFile


@runtime_checkable
class CredentialStore(Protocol):
    """Persists the OAuth credential of each linked account."""

    async def get_latest_credential(self, account_id: str) -> Optional[Credential]:
        ...

    async def upsert_credential(self, account_id: str, credential: Credential) -> str:
        ...

    async def clear_credential(self, account_id: str) -> None:
        ...


@runtime_checkable
class FileIndexStore(Protocol):
    """Persists the local file metadata mirror and sync bookkeeping.

    Read failures raise ``PersistenceError``. ``insert_file`` returns the new
    local id, or None when the row could not be written.
    """

    async def list_file_index(self, account_id: str) -> List[FileIndexEntry]:
        ...

    async def insert_file(self, account_id: str, file: "RemoteFile") -> Optional[str]:
        ...

    async def update_file(self, local_id: str, file: "RemoteFile") -> bool:
        ...

    async def delete_file(self, local_id: str) -> bool:
        ...

    async def list_stored_remote_ids(self, account_id: str) -> List[StoredRemoteId]:
        ...

    async def get_last_sync_timestamp(self, account_id: str) -> Optional[datetime]:
        ...

    async def set_last_sync_timestamp(self, account_id: str, timestamp: datetime) -> None:
        ...

    async def record_sync_run(self, account_id: str, run: SyncRunRecord) -> None:
        ...
