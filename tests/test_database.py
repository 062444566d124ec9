"""Tests for the SQLAlchemy-backed store."""

from datetime import datetime, timedelta, timezone

import pytest

from debrid_connector.database import (
    DatabaseService,
    FileRepository,
    SyncRunRecord,
    SyncRunRepository,
    init_database,
)
from debrid_connector.database.stores import CredentialStore, FileIndexStore

from conftest import make_credential, make_remote_file


class TestDatabaseService:
    """DatabaseService against an in-memory SQLite database."""

    def setup_method(self):
        self.db_manager = init_database("sqlite:///:memory:")
        self.service = DatabaseService(self.db_manager)

    def teardown_method(self):
        self.db_manager.dispose()

    def test_implements_store_contracts(self):
        assert isinstance(self.service, CredentialStore)
        assert isinstance(self.service, FileIndexStore)

    @pytest.mark.asyncio
    async def test_credential_upsert_replaces_existing(self):
        first_id = await self.service.upsert_credential("acct", make_credential())
        renewed = make_credential().model_copy(update={"access_token": "renewed"})
        second_id = await self.service.upsert_credential("acct", renewed)

        credential = await self.service.get_latest_credential("acct")

        assert first_id == second_id
        assert credential.access_token == "renewed"
        assert credential.expires_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_clear_credential(self):
        await self.service.upsert_credential("acct", make_credential())

        await self.service.clear_credential("acct")

        assert await self.service.get_latest_credential("acct") is None

    @pytest.mark.asyncio
    async def test_file_insert_update_delete(self):
        local_id = await self.service.insert_file("acct", make_remote_file("r1", "AAA"))

        index = await self.service.list_file_index("acct")
        assert [(e.local_id, e.remote_id, e.hash) for e in index] == [(local_id, "r1", "AAA")]

        assert await self.service.update_file(local_id, make_remote_file("r2", "AAA"))
        stored = await self.service.list_stored_remote_ids("acct")
        assert [s.remote_id for s in stored] == ["r2"]

        assert await self.service.delete_file(local_id)
        assert await self.service.count_files("acct") == 0

    @pytest.mark.asyncio
    async def test_duplicate_remote_id_insert_returns_none(self):
        await self.service.insert_file("acct", make_remote_file("r1"))

        assert await self.service.insert_file("acct", make_remote_file("r1")) is None
        assert await self.service.count_files("acct") == 1

    @pytest.mark.asyncio
    async def test_missing_rows_report_false(self):
        assert not await self.service.update_file("999", make_remote_file("r1"))
        assert not await self.service.delete_file("999")

    @pytest.mark.asyncio
    async def test_files_are_scoped_by_account(self):
        await self.service.insert_file("acct", make_remote_file("r1"))
        await self.service.insert_file("other", make_remote_file("r1"))

        assert await self.service.count_files("acct") == 1
        assert len(await self.service.list_file_index("other")) == 1

    @pytest.mark.asyncio
    async def test_last_sync_timestamp_round_trip(self):
        assert await self.service.get_last_sync_timestamp("acct") is None

        moment = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        await self.service.set_last_sync_timestamp("acct", moment)
        await self.service.set_last_sync_timestamp("acct", moment + timedelta(hours=1))

        assert await self.service.get_last_sync_timestamp("acct") == moment + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_record_sync_run(self):
        run = SyncRunRecord(
            job_id="sync_1_abc",
            status="completed",
            started_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
            ended_at=datetime(2024, 6, 1, 0, 1, tzinfo=timezone.utc),
            files_processed=2,
            files_added=1,
            duplicates_found=1,
            errors=["Failed to insert file x"],
            duration_seconds=60.0,
        )

        await self.service.record_sync_run("acct", run)

        with self.db_manager.session_scope() as session:
            recent = SyncRunRepository(session).get_recent("acct")
            assert len(recent) == 1
            assert recent[0].error_count == 1
            assert recent[0].error_details == {"errors": ["Failed to insert file x"]}

    def test_repository_lookup_by_remote_id(self):
        with self.db_manager.session_scope() as session:
            repo = FileRepository(session)
            repo.create("acct", make_remote_file("r1", "AAA"))
            found = repo.get_by_remote_id("acct", "r1")
            assert found is not None
            assert found.content_hash == "AAA"
