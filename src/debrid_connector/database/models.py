"""Database models for the debrid connector."""

from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    BigInteger, Column, DateTime, Integer, JSON, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.timestamps import ensure_utc, utcnow


Base = declarative_base()


def _utcnow_naive() -> datetime:
    return utcnow().replace(tzinfo=None)


# SQLAlchemy Models (Database Tables)

class CredentialModel(Base):
    """OAuth credential for a linked account."""

    __tablename__ = "oauth_tokens"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(100), nullable=False, unique=True, index=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    client_id = Column(String(255), nullable=True)
    client_secret = Column(Text, nullable=False)
    token_type = Column(String(50), default="Bearer", nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=_utcnow_naive, nullable=False)
    updated_at = Column(DateTime, default=_utcnow_naive, onupdate=_utcnow_naive, nullable=False)

    def __repr__(self):
        return f"<CredentialModel(id={self.id}, account_id='{self.account_id}')>"


class FileModel(Base):
    """Local metadata mirror of one remote file."""

    __tablename__ = "files"
    __table_args__ = (
        UniqueConstraint("account_id", "remote_id", name="uq_files_account_remote"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(100), nullable=False, index=True)

    # Remote identification
    remote_id = Column(String(255), nullable=False, index=True)
    original_filename = Column(String(1000), nullable=False)
    content_hash = Column(String(255), nullable=True, index=True)
    download_url = Column(Text, nullable=True)

    # File metadata
    file_size = Column(BigInteger, nullable=True)
    mime_type = Column(String(255), nullable=True)

    # Timestamps
    remote_created_at = Column(DateTime, nullable=True)
    remote_modified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow_naive, nullable=False)
    updated_at = Column(DateTime, default=_utcnow_naive, onupdate=_utcnow_naive, nullable=False)

    def __repr__(self):
        return f"<FileModel(id={self.id}, name='{self.original_filename}', remote_id='{self.remote_id}')>"


class SyncStateModel(Base):
    """Last successful sync per account."""

    __tablename__ = "sync_state"

    account_id = Column(String(100), primary_key=True)
    last_sync_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=_utcnow_naive, onupdate=_utcnow_naive, nullable=False)


class SyncRunModel(Base):
    """Outcome of a finished sync job."""

    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(100), nullable=False, index=True)
    job_id = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)

    files_processed = Column(Integer, default=0, nullable=False)
    files_added = Column(Integer, default=0, nullable=False)
    files_updated = Column(Integer, default=0, nullable=False)
    files_deleted = Column(Integer, default=0, nullable=False)
    duplicates_found = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)

    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<SyncRunModel(id={self.id}, account_id='{self.account_id}', status='{self.status}')>"


# Pydantic Models (Transfer Objects)

class Credential(BaseModel):
    """OAuth credential as exchanged with the stores."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    access_token: str
    refresh_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: str = ""
    expires_at: datetime
    token_type: str = "Bearer"

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v):
        return None if v is None else str(v)

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class FileIndexEntry(BaseModel):
    """Identity of a stored file used to classify incoming files."""

    local_id: str
    remote_id: Optional[str] = None
    hash: Optional[str] = None

    @field_validator("local_id", mode="before")
    @classmethod
    def stringify_local_id(cls, v):
        return str(v)


class StoredRemoteId(BaseModel):
    """A stored file's local and remote id pair."""

    local_id: str
    remote_id: Optional[str] = None

    @field_validator("local_id", mode="before")
    @classmethod
    def stringify_local_id(cls, v):
        return str(v)


class SyncRunRecord(BaseModel):
    """Pydantic model for a finished sync job."""

    job_id: str
    status: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    files_processed: int = 0
    files_added: int = 0
    files_updated: int = 0
    files_deleted: int = 0
    duplicates_found: int = 0
    errors: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None
