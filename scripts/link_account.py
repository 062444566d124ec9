#!/usr/bin/env python3
"""
Link a Real-Debrid account through the device-code flow.

Stores the credential in the configured database (or Supabase), prints the
connection status and optionally runs one sync.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
from debrid_connector.auth.device_flow import format_user_code
from debrid_connector.api_clients.errors import DebridError
from debrid_connector.config.settings import get_settings
from debrid_connector.core import DebridConnector
from debrid_connector.database import DatabaseService, SupabaseStore, init_database
from debrid_connector.utils.logging import setup_logging


def show_device_code(session):
    print("\nTo link your account, open:")
    print(f"  {session.direct_verification_url or session.verification_url}")
    print(f"and enter the code: {format_user_code(session.user_code)}\n")


def build_store(backend: str):
    settings = get_settings()
    if backend == "supabase":
        return SupabaseStore.from_settings(settings.supabase)
    return DatabaseService(init_database(settings.database.url))


async def run(account_id: str, backend: str, sync: bool, relink: bool) -> bool:
    store = build_store(backend)

    async with DebridConnector(account_id, store, store) as connector:
        status = await connector.get_connection_status()

        if relink or not status.is_connected:
            try:
                await connector.link_account(
                    on_device_code=show_device_code,
                    on_polling=lambda attempt: print(f"Waiting for approval (attempt {attempt})...")
                )
            except DebridError as e:
                print(f"❌ Linking failed: {e}")
                return False
            status = await connector.get_connection_status()

        print(f"State: {status.state.value}")
        print(f"API health: {status.api_health.value}")
        if status.user:
            print(f"User: {status.user.username} ({status.user.type})")
        if status.token_expiry:
            print(f"Token expires: {status.token_expiry.isoformat()}")
        if status.error:
            print(f"Issue: {status.error.message}")

        if sync and status.is_connected:
            await connector.start_sync()
            result = await connector.sync_engine.wait()
            print(
                f"Sync {'completed' if result.success else 'failed'}: "
                f"{result.files_added} added, {result.files_updated} updated, "
                f"{result.duplicates_found} duplicates, {result.files_deleted} deleted"
            )
            for error in result.errors:
                print(f"  - {error}")
            return result.success

        return status.is_connected


def main():
    parser = argparse.ArgumentParser(description="Link a Real-Debrid account")
    parser.add_argument("account_id", help="Local account identifier")
    parser.add_argument("--store", choices=["database", "supabase"], default="database")
    parser.add_argument("--sync", action="store_true", help="Run one sync after linking")
    parser.add_argument("--relink", action="store_true", help="Link even if a valid credential exists")
    args = parser.parse_args()

    load_dotenv()
    setup_logging(log_level="INFO", log_format="console")

    success = asyncio.run(run(args.account_id, args.store, args.sync, args.relink))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
