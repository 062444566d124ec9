"""Persistence package: store contracts and their implementations."""

from .models import (
    Base,
    CredentialModel,
    FileModel,
    SyncStateModel,
    SyncRunModel,
    Credential,
    FileIndexEntry,
    StoredRemoteId,
    SyncRunRecord
)

from .stores import CredentialStore, FileIndexStore

from .database import DatabaseManager, init_database

from .operations import (
    CredentialRepository,
    FileRepository,
    SyncStateRepository,
    SyncRunRepository
)

from .service import DatabaseService
from .supabase_service import SupabaseStore

__all__ = [
    # Models
    "Base",
    "CredentialModel",
    "FileModel",
    "SyncStateModel",
    "SyncRunModel",
    "Credential",
    "FileIndexEntry",
    "StoredRemoteId",
    "SyncRunRecord",

    # Contracts
    "CredentialStore",
    "FileIndexStore",

    # Database management
    "DatabaseManager",
    "init_database",

    # Repositories
    "CredentialRepository",
    "FileRepository",
    "SyncStateRepository",
    "SyncRunRepository",

    # Stores
    "DatabaseService",
    "SupabaseStore"
]
