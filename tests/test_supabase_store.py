"""Tests for the Supabase-backed store."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock

import pytest
from postgrest.exceptions import APIError

from debrid_connector.api_clients.errors import PersistenceError
from debrid_connector.config.settings import SupabaseSettings
from debrid_connector.database.supabase_service import SupabaseStore

from conftest import make_credential, make_remote_file


def make_query(*results):
    """A fluent query mock whose ``execute`` yields ``results`` in order."""
    query = MagicMock()
    for method in ("select", "eq", "order", "limit", "insert", "update", "upsert", "delete"):
        getattr(query, method).return_value = query
    query.execute.side_effect = [Mock(data=data) if not isinstance(data, Exception) else data for data in results]
    return query


class TestSupabaseStore:
    """Row mapping and error wrapping."""

    def setup_method(self):
        self.client = MagicMock()
        self.store = SupabaseStore(self.client)

    def test_from_settings_requires_configuration(self):
        with pytest.raises(PersistenceError):
            SupabaseStore.from_settings(SupabaseSettings(url="", anon_key="", service_role_key=""))

    @pytest.mark.asyncio
    async def test_get_latest_credential_maps_row(self):
        self.client.table.return_value = make_query([{
            "id": 7,
            "access_token": "access",
            "refresh_token": "refresh",
            "client_id": "cid",
            "client_secret": "secret",
            "token_type": "Bearer",
            "expires_at": "2024-06-01T13:00:00+00:00",
        }])

        credential = await self.store.get_latest_credential("user-1")

        assert credential.id == "7"
        assert credential.expires_at == datetime(2024, 6, 1, 13, 0, tzinfo=timezone.utc)
        self.client.table.assert_called_with("oauth_tokens")

    @pytest.mark.asyncio
    async def test_get_latest_credential_without_row(self):
        self.client.table.return_value = make_query([])

        assert await self.store.get_latest_credential("user-1") is None

    @pytest.mark.asyncio
    async def test_upsert_credential_updates_existing_row(self):
        query = make_query([{"id": 3}], [{"id": 3}])
        self.client.table.return_value = query

        credential_id = await self.store.upsert_credential("user-1", make_credential())

        assert credential_id == "3"
        payload = query.update.call_args.args[0]
        assert payload["user_id"] == "user-1"
        assert payload["access_token"] == "access"
        query.insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_upsert_credential_inserts_new_row(self):
        query = make_query([], [{"id": 11}])
        self.client.table.return_value = query

        assert await self.store.upsert_credential("user-1", make_credential()) == "11"
        query.insert.assert_called_once()

    @pytest.mark.asyncio
    async def test_list_file_index(self):
        self.client.table.return_value = make_query([
            {"id": 1, "real_debrid_id": "r1", "sha1_hash": "AAA"},
            {"id": 2, "real_debrid_id": "r2", "sha1_hash": None},
        ])

        index = await self.store.list_file_index("user-1")

        assert [(e.local_id, e.remote_id, e.hash) for e in index] == [("1", "r1", "AAA"), ("2", "r2", None)]

    @pytest.mark.asyncio
    async def test_insert_file_writes_row(self):
        query = make_query([{"id": 5}])
        self.client.table.return_value = query

        local_id = await self.store.insert_file("user-1", make_remote_file("r1", "AAA"))

        assert local_id == "5"
        row = query.insert.call_args.args[0]
        assert row["user_id"] == "user-1"
        assert row["real_debrid_id"] == "r1"
        assert row["sha1_hash"] == "AAA"

    @pytest.mark.asyncio
    async def test_write_failures_are_reported_not_raised(self):
        error = APIError({"message": "duplicate key", "code": "23505", "hint": None, "details": None})
        self.client.table.return_value = make_query(error, error, error)

        assert await self.store.insert_file("user-1", make_remote_file("r1")) is None
        assert await self.store.update_file("1", make_remote_file("r1")) is False
        assert await self.store.delete_file("1") is False

    @pytest.mark.asyncio
    async def test_delete_file_reports_whether_a_row_matched(self):
        query = make_query([{"id": 1}], [])
        self.client.table.return_value = query

        assert await self.store.delete_file("1") is True
        assert await self.store.delete_file("missing") is False
        query.eq.assert_called_with("id", "missing")

    @pytest.mark.asyncio
    async def test_read_failure_raises_persistence_error(self):
        error = APIError({"message": "permission denied", "code": "42501", "hint": None, "details": None})
        self.client.table.return_value = make_query(error)

        with pytest.raises(PersistenceError):
            await self.store.list_stored_remote_ids("user-1")

    @pytest.mark.asyncio
    async def test_last_sync_timestamp(self):
        query = make_query([], None, [{"last_sync_at": "2024-06-01T12:00:00+00:00"}])
        self.client.table.return_value = query
        moment = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

        assert await self.store.get_last_sync_timestamp("user-1") is None
        await self.store.set_last_sync_timestamp("user-1", moment)
        assert await self.store.get_last_sync_timestamp("user-1") == moment

        assert query.upsert.call_args.kwargs["on_conflict"] == "user_id"
