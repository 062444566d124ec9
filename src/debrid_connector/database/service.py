"""SQLAlchemy-backed credential and file index store."""

from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .database import DatabaseManager
from .models import Credential, FileIndexEntry, StoredRemoteId, SyncRunRecord
from .operations import (
    CredentialRepository,
    FileRepository,
    SyncRunRepository,
    SyncStateRepository
)
from ..api_clients.errors import PersistenceError
from ..api_clients.models import RemoteFile
from ..utils.logging import get_logger
from ..utils.timestamps import ensure_utc


logger = get_logger("database.service")


class DatabaseService:
    """Implements ``CredentialStore`` and ``FileIndexStore`` on a relational database."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    @contextmanager
    def transaction(self, operation: str):
        """Transactional scope that reports driver errors as ``PersistenceError``."""
        try:
            with self.db_manager.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("Database operation failed", operation=operation, error=str(e))
            raise PersistenceError(f"{operation} failed: {e}") from e

    # Credential store

    async def get_latest_credential(self, account_id: str) -> Optional[Credential]:
        with self.transaction("get_latest_credential") as session:
            record = CredentialRepository(session).get_by_account(account_id)
            if record is None:
                return None
            credential = Credential.model_validate(record)
            return credential

    async def upsert_credential(self, account_id: str, credential: Credential) -> str:
        with self.transaction("upsert_credential") as session:
            record = CredentialRepository(session).upsert(account_id, credential)
            return str(record.id)

    async def clear_credential(self, account_id: str) -> None:
        with self.transaction("clear_credential") as session:
            CredentialRepository(session).delete_by_account(account_id)

    # File index store

    async def list_file_index(self, account_id: str) -> List[FileIndexEntry]:
        with self.transaction("list_file_index") as session:
            return [
                FileIndexEntry(local_id=record.id, remote_id=record.remote_id, hash=record.content_hash)
                for record in FileRepository(session).get_by_account(account_id)
            ]

    async def insert_file(self, account_id: str, file: RemoteFile) -> Optional[str]:
        try:
            with self.transaction("insert_file") as session:
                record = FileRepository(session).create(account_id, file)
                return str(record.id)
        except PersistenceError:
            logger.warning("File insert failed", account_id=account_id, remote_id=file.id)
            return None

    async def update_file(self, local_id: str, file: RemoteFile) -> bool:
        try:
            with self.transaction("update_file") as session:
                return FileRepository(session).update(int(local_id), file) is not None
        except PersistenceError:
            logger.warning("File update failed", local_id=local_id, remote_id=file.id)
            return False

    async def delete_file(self, local_id: str) -> bool:
        try:
            with self.transaction("delete_file") as session:
                return FileRepository(session).delete(int(local_id))
        except PersistenceError:
            logger.warning("File delete failed", local_id=local_id)
            return False

    async def list_stored_remote_ids(self, account_id: str) -> List[StoredRemoteId]:
        with self.transaction("list_stored_remote_ids") as session:
            return [
                StoredRemoteId(local_id=record.id, remote_id=record.remote_id)
                for record in FileRepository(session).get_by_account(account_id)
            ]

    async def get_last_sync_timestamp(self, account_id: str) -> Optional[datetime]:
        with self.transaction("get_last_sync_timestamp") as session:
            return ensure_utc(SyncStateRepository(session).get_last_sync(account_id))

    async def set_last_sync_timestamp(self, account_id: str, timestamp: datetime) -> None:
        with self.transaction("set_last_sync_timestamp") as session:
            SyncStateRepository(session).set_last_sync(account_id, timestamp)

    async def record_sync_run(self, account_id: str, run: SyncRunRecord) -> None:
        with self.transaction("record_sync_run") as session:
            SyncRunRepository(session).create(account_id, run)

    async def count_files(self, account_id: str) -> int:
        with self.transaction("count_files") as session:
            return FileRepository(session).count_by_account(account_id)
