"""Core connector logic package."""

from .sync_engine import (
    FileIndex,
    JobControl,
    JobSignal,
    SyncEngine,
    SyncJobStatus,
    SyncProgress,
    SyncResult,
    SyncStats,
    SyncStatus,
    SyncTiming
)
from .connector import ApiHealth, ConnectionIssue, ConnectionState, ConnectionStatus, DebridConnector

__all__ = [
    "FileIndex",
    "JobControl",
    "JobSignal",
    "SyncEngine",
    "SyncJobStatus",
    "SyncProgress",
    "SyncResult",
    "SyncStats",
    "SyncStatus",
    "SyncTiming",
    "ApiHealth",
    "ConnectionIssue",
    "ConnectionState",
    "ConnectionStatus",
    "DebridConnector"
]
