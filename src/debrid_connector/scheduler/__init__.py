"""Scheduling package."""

from .auto_sync import AutoSyncScheduler

__all__ = ["AutoSyncScheduler"]
