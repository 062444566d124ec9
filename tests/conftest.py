"""Shared fixtures for the test suite."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from debrid_connector.api_clients.models import RemoteFile
from debrid_connector.database.models import (
    Credential,
    FileIndexEntry,
    StoredRemoteId,
    SyncRunRecord
)


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_remote_file(
    file_id: str,
    file_hash: str = "",
    name: Optional[str] = None,
    modified_at: Optional[datetime] = NOW
) -> RemoteFile:
    return RemoteFile(
        id=file_id,
        name=name or f"{file_id}.mkv",
        size=1024,
        hash=file_hash,
        mime_type="video/x-matroska",
        created_at=modified_at,
        modified_at=modified_at,
        download_url=f"https://real-debrid.example/d/{file_id}",
    )


def make_credential(expires_in: timedelta = timedelta(hours=1), refresh_token: Optional[str] = "refresh") -> Credential:
    return Credential(
        access_token="access",
        refresh_token=refresh_token,
        client_id="device-client",
        client_secret="device-secret",
        expires_at=datetime.now(timezone.utc) + expires_in,
    )


class InMemoryStore:
    """Credential and file index store kept in dictionaries."""

    def __init__(self):
        self.credentials: Dict[str, Credential] = {}
        self.files: Dict[str, Dict] = {}
        self.last_sync: Dict[str, datetime] = {}
        self.runs: List[SyncRunRecord] = []
        self.fail_inserts_for: set = set()
        self._next_id = 1

    # Credentials

    async def get_latest_credential(self, account_id: str) -> Optional[Credential]:
        return self.credentials.get(account_id)

    async def upsert_credential(self, account_id: str, credential: Credential) -> str:
        self.credentials[account_id] = credential
        return "1"

    async def clear_credential(self, account_id: str) -> None:
        self.credentials.pop(account_id, None)

    # Files

    def seed(self, account_id: str, remote_id: str, file_hash: str = "") -> str:
        local_id = str(self._next_id)
        self._next_id += 1
        self.files[local_id] = {"account_id": account_id, "remote_id": remote_id, "hash": file_hash}
        return local_id

    async def list_file_index(self, account_id: str) -> List[FileIndexEntry]:
        return [
            FileIndexEntry(local_id=local_id, remote_id=row["remote_id"], hash=row["hash"])
            for local_id, row in self.files.items()
            if row["account_id"] == account_id
        ]

    async def insert_file(self, account_id: str, file: RemoteFile) -> Optional[str]:
        if file.id in self.fail_inserts_for:
            return None
        return self.seed(account_id, file.id, file.hash)

    async def update_file(self, local_id: str, file: RemoteFile) -> bool:
        row = self.files.get(local_id)
        if row is None:
            return False
        row["remote_id"] = file.id
        row["hash"] = file.hash
        return True

    async def delete_file(self, local_id: str) -> bool:
        return self.files.pop(local_id, None) is not None

    async def list_stored_remote_ids(self, account_id: str) -> List[StoredRemoteId]:
        return [
            StoredRemoteId(local_id=local_id, remote_id=row["remote_id"])
            for local_id, row in self.files.items()
            if row["account_id"] == account_id
        ]

    async def get_last_sync_timestamp(self, account_id: str) -> Optional[datetime]:
        return self.last_sync.get(account_id)

    async def set_last_sync_timestamp(self, account_id: str, timestamp: datetime) -> None:
        self.last_sync[account_id] = timestamp

    async def record_sync_run(self, account_id: str, run: SyncRunRecord) -> None:
        self.runs.append(run)


@pytest.fixture
def store():
    return InMemoryStore()
