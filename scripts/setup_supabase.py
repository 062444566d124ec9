#!/usr/bin/env python3
"""
Script to set up the Supabase tables used by the Supabase store and test the connection.
Run this after configuring your Supabase credentials.
"""

import asyncio
import sys
from pathlib import Path

# Add the src directory to the Python path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
from debrid_connector.api_clients.errors import PersistenceError
from debrid_connector.config.settings import get_settings
from debrid_connector.database import SupabaseStore
from debrid_connector.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

# SQL to create tables in Supabase
CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS oauth_tokens (
    id SERIAL PRIMARY KEY,
    user_id VARCHAR(100) NOT NULL UNIQUE,
    access_token TEXT NOT NULL,
    refresh_token TEXT,
    client_id VARCHAR(255),
    client_secret TEXT NOT NULL,
    token_type VARCHAR(50) DEFAULT 'Bearer' NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW() NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT NOW() NOT NULL
);

CREATE TABLE IF NOT EXISTS files (
    id SERIAL PRIMARY KEY,
    user_id VARCHAR(100) NOT NULL,
    real_debrid_id VARCHAR(255) NOT NULL,
    original_filename TEXT NOT NULL,
    file_size BIGINT,
    mime_type VARCHAR(255),
    sha1_hash VARCHAR(255),
    download_url TEXT,
    remote_created_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT NOW() NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT NOW() NOT NULL,
    UNIQUE (user_id, real_debrid_id)
);

CREATE INDEX IF NOT EXISTS idx_files_user_id ON files(user_id);
CREATE INDEX IF NOT EXISTS idx_files_sha1_hash ON files(sha1_hash);

CREATE TABLE IF NOT EXISTS sync_state (
    user_id VARCHAR(100) PRIMARY KEY,
    last_sync_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_runs (
    id SERIAL PRIMARY KEY,
    user_id VARCHAR(100) NOT NULL,
    job_id VARCHAR(64) NOT NULL,
    status VARCHAR(20) NOT NULL,
    started_at TIMESTAMPTZ,
    ended_at TIMESTAMPTZ,
    files_processed INTEGER DEFAULT 0 NOT NULL,
    files_added INTEGER DEFAULT 0 NOT NULL,
    files_updated INTEGER DEFAULT 0 NOT NULL,
    files_deleted INTEGER DEFAULT 0 NOT NULL,
    duplicates_found INTEGER DEFAULT 0 NOT NULL,
    error_count INTEGER DEFAULT 0 NOT NULL,
    error_message TEXT,
    duration_seconds DOUBLE PRECISION
);

CREATE INDEX IF NOT EXISTS idx_sync_runs_user_id ON sync_runs(user_id);
"""


async def test_connection() -> bool:
    """Query every table the store reads."""
    settings = get_settings()

    logger.info("Testing Supabase connection", url=settings.supabase.url)

    try:
        store = SupabaseStore.from_settings(settings.supabase)
        await store.get_latest_credential("__connection_check__")
        await store.list_file_index("__connection_check__")
        await store.get_last_sync_timestamp("__connection_check__")
    except PersistenceError as e:
        logger.error("Supabase connection failed", error=str(e))
        return False

    logger.info("✅ All required tables are accessible!")
    return True


def setup_tables():
    """Print SQL for creating tables."""
    logger.info("Copy and paste the following SQL into your Supabase SQL Editor")
    print(CREATE_TABLES_SQL)
    logger.info("After running the SQL, run this script again to test the connection.")


async def main() -> bool:
    load_dotenv()
    setup_logging(log_level="INFO", log_format="console")
    settings = get_settings()

    if not settings.supabase.is_configured:
        logger.error("❌ CONNECTOR_SUPABASE_URL and a Supabase key must be set in .env")
        return False

    if not await test_connection():
        setup_tables()
        return False

    logger.info("✅ Supabase is ready to use!")
    return True


if __name__ == "__main__":
    success = asyncio.run(main())
    sys.exit(0 if success else 1)
