"""Database operations and repository classes."""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from .models import (
    CredentialModel, FileModel, SyncStateModel, SyncRunModel,
    Credential, SyncRunRecord
)
from ..api_clients.models import RemoteFile
from ..utils.logging import get_logger, log_execution_time


logger = get_logger("database.operations")


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class CredentialRepository:
    """Repository for OAuth credentials."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_account(self, account_id: str) -> Optional[CredentialModel]:
        return (
            self.session.query(CredentialModel)
            .filter(CredentialModel.account_id == account_id)
            .order_by(CredentialModel.updated_at.desc())
            .first()
        )

    @log_execution_time
    def upsert(self, account_id: str, credential: Credential) -> CredentialModel:
        """Create or replace the credential of an account."""
        record = self.get_by_account(account_id)
        if record is None:
            record = CredentialModel(account_id=account_id)
            self.session.add(record)

        record.access_token = credential.access_token
        record.refresh_token = credential.refresh_token
        record.client_id = credential.client_id
        record.client_secret = credential.client_secret
        record.token_type = credential.token_type
        record.expires_at = _naive_utc(credential.expires_at)

        self.session.flush()
        logger.info("Credential stored", account_id=account_id, credential_id=record.id)
        return record

    def delete_by_account(self, account_id: str) -> int:
        deleted = (
            self.session.query(CredentialModel)
            .filter(CredentialModel.account_id == account_id)
            .delete(synchronize_session=False)
        )
        logger.info("Credential cleared", account_id=account_id, deleted=deleted)
        return deleted


class FileRepository:
    """Repository for file metadata."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, file_id: int) -> Optional[FileModel]:
        return self.session.get(FileModel, file_id)

    def get_by_account(self, account_id: str) -> List[FileModel]:
        return (
            self.session.query(FileModel)
            .filter(FileModel.account_id == account_id)
            .order_by(FileModel.id)
            .all()
        )

    def get_by_remote_id(self, account_id: str, remote_id: str) -> Optional[FileModel]:
        return (
            self.session.query(FileModel)
            .filter(FileModel.account_id == account_id, FileModel.remote_id == remote_id)
            .first()
        )

    @staticmethod
    def _apply(record: FileModel, file: RemoteFile) -> None:
        record.remote_id = file.id
        record.original_filename = file.name
        record.file_size = file.size
        record.mime_type = file.mime_type
        record.content_hash = file.hash or None
        record.download_url = file.download_url
        record.remote_created_at = _naive_utc(file.created_at)
        record.remote_modified_at = _naive_utc(file.modified_at)

    def create(self, account_id: str, file: RemoteFile) -> FileModel:
        record = FileModel(account_id=account_id)
        self._apply(record, file)
        self.session.add(record)
        self.session.flush()
        return record

    def update(self, file_id: int, file: RemoteFile) -> Optional[FileModel]:
        record = self.get_by_id(file_id)
        if record is None:
            return None
        self._apply(record, file)
        self.session.flush()
        return record

    def delete(self, file_id: int) -> bool:
        record = self.get_by_id(file_id)
        if record is None:
            return False
        self.session.delete(record)
        self.session.flush()
        return True

    def count_by_account(self, account_id: str) -> int:
        return self.session.query(FileModel).filter(FileModel.account_id == account_id).count()


class SyncStateRepository:
    """Repository for per-account sync bookkeeping."""

    def __init__(self, session: Session):
        self.session = session

    def get_last_sync(self, account_id: str) -> Optional[datetime]:
        record = self.session.get(SyncStateModel, account_id)
        return record.last_sync_at if record else None

    def set_last_sync(self, account_id: str, timestamp: datetime) -> None:
        record = self.session.get(SyncStateModel, account_id)
        if record is None:
            record = SyncStateModel(account_id=account_id, last_sync_at=_naive_utc(timestamp))
            self.session.add(record)
        else:
            record.last_sync_at = _naive_utc(timestamp)
        self.session.flush()


class SyncRunRepository:
    """Repository for sync run logs."""

    def __init__(self, session: Session):
        self.session = session

    @log_execution_time
    def create(self, account_id: str, run: SyncRunRecord) -> SyncRunModel:
        record = SyncRunModel(
            account_id=account_id,
            job_id=run.job_id,
            status=run.status,
            started_at=_naive_utc(run.started_at),
            ended_at=_naive_utc(run.ended_at),
            files_processed=run.files_processed,
            files_added=run.files_added,
            files_updated=run.files_updated,
            files_deleted=run.files_deleted,
            duplicates_found=run.duplicates_found,
            error_count=len(run.errors),
            error_message=run.error_message,
            error_details={"errors": run.errors} if run.errors else None,
            duration_seconds=int(run.duration_seconds) if run.duration_seconds is not None else None,
        )
        self.session.add(record)
        self.session.flush()

        logger.info("Sync run recorded", account_id=account_id, job_id=run.job_id, status=run.status)
        return record

    def get_recent(self, account_id: str, limit: int = 10) -> List[SyncRunModel]:
        return (
            self.session.query(SyncRunModel)
            .filter(SyncRunModel.account_id == account_id)
            .order_by(SyncRunModel.id.desc())
            .limit(limit)
            .all()
        )
