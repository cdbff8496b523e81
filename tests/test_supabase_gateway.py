"""Tests for the Supabase gateway against a mocked async client."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from dashsync.gateway.supabase import SupabaseGateway, extract_row
from dashsync.types import RemoteRecord, Snapshot, TransportFailure

USER = "user-1"

ROW = {
    "user_id": USER,
    "data": {"version": 1, "updated_at": "2026-06-01T08:00:00+00:00", "app": {"tasks": [{"id": "t1"}]}},
    "updated_at": "2026-06-01T08:00:00+00:00",
}


def _api_error(message="permission denied for table user_data"):
    return APIError({"message": message, "code": "42501", "hint": None, "details": None})


@pytest.fixture
def client():
    """Mock AsyncClient; query builders chain and ``execute`` is awaitable."""
    client = MagicMock()
    query = client.table.return_value
    for method in ("select", "eq", "maybe_single", "upsert"):
        getattr(query, method).return_value = query
    query.execute = AsyncMock(return_value=MagicMock(data=ROW))
    client.remove_channel = AsyncMock()
    channel = client.channel.return_value
    channel.on_postgres_changes.return_value = channel
    channel.subscribe = AsyncMock(return_value=channel)
    return client


@pytest.fixture
def gateway(client):
    return SupabaseGateway(client, table="user_data")


class TestUpsert:
    @pytest.mark.asyncio
    async def test_sends_full_row(self, gateway, client):
        snapshot = Snapshot.from_dict(ROW["data"])

        await gateway.upsert(USER, snapshot)

        client.table.assert_called_with("user_data")
        row = client.table.return_value.upsert.call_args[0][0]
        assert row["user_id"] == USER
        assert row["updated_at"] == "2026-06-01T08:00:00+00:00"
        assert row["data"] == ROW["data"]

    @pytest.mark.asyncio
    async def test_api_error_becomes_transport_failure(self, gateway, client):
        client.table.return_value.execute.side_effect = _api_error()

        with pytest.raises(TransportFailure) as exc_info:
            await gateway.upsert(USER, Snapshot.from_dict(ROW["data"]))

        assert "permission denied" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_network_error_becomes_transport_failure(self, gateway, client):
        client.table.return_value.execute.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(TransportFailure) as exc_info:
            await gateway.upsert(USER, Snapshot.from_dict(ROW["data"]))

        assert "connection refused" in exc_info.value.reason


class TestFetch:
    @pytest.mark.asyncio
    async def test_returns_record(self, gateway, client):
        record = await gateway.fetch(USER)

        query = client.table.return_value
        query.select.assert_called_with("*")
        query.eq.assert_called_with("user_id", USER)
        query.maybe_single.assert_called_once()
        assert isinstance(record, RemoteRecord)
        assert record.data.payload["app"]["tasks"] == [{"id": "t1"}]

    @pytest.mark.asyncio
    async def test_missing_row_response_is_none(self, gateway, client):
        client.table.return_value.execute.return_value = None

        assert await gateway.fetch(USER) is None

    @pytest.mark.asyncio
    async def test_empty_data_is_none(self, gateway, client):
        client.table.return_value.execute.return_value = MagicMock(data=None)

        assert await gateway.fetch(USER) is None

    @pytest.mark.asyncio
    async def test_error_becomes_transport_failure(self, gateway, client):
        client.table.return_value.execute.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(TransportFailure):
            await gateway.fetch(USER)


class TestRealtime:
    @pytest.mark.asyncio
    async def test_subscribe_filters_on_user_row(self, gateway, client):
        handle = await gateway.subscribe(USER, lambda record: None)

        client.channel.assert_called_once_with(f"user_data_sync_{USER}")
        channel = client.channel.return_value
        args, kwargs = channel.on_postgres_changes.call_args
        assert args[0] == "*"
        assert kwargs["schema"] == "public"
        assert kwargs["table"] == "user_data"
        assert kwargs["filter"] == f"user_id=eq.{USER}"
        channel.subscribe.assert_awaited_once()
        assert handle is channel

    @pytest.mark.asyncio
    async def test_callback_receives_records(self, gateway, client):
        received = []
        await gateway.subscribe(USER, received.append)
        handler = client.channel.return_value.on_postgres_changes.call_args.kwargs["callback"]

        handler({"data": {"type": "UPDATE", "record": ROW}})
        handler({"data": {"type": "DELETE", "record": None, "old_record": {"user_id": USER}}})

        assert len(received) == 1
        assert received[0].user_id == USER
        assert received[0].data.payload["app"]["tasks"] == [{"id": "t1"}]

    @pytest.mark.asyncio
    async def test_subscribe_failure_becomes_transport_failure(self, gateway, client):
        client.channel.return_value.subscribe.side_effect = OSError("socket closed")

        with pytest.raises(TransportFailure):
            await gateway.subscribe(USER, lambda record: None)

    @pytest.mark.asyncio
    async def test_unsubscribe_removes_channel(self, gateway, client):
        handle = await gateway.subscribe(USER, lambda record: None)

        await gateway.unsubscribe(handle)

        client.remove_channel.assert_awaited_once_with(handle)


class TestExtractRow:
    def test_record_key(self):
        assert extract_row({"data": {"record": ROW}}) == ROW

    def test_new_key(self):
        assert extract_row({"new": ROW}) == ROW

    def test_missing_row(self):
        assert extract_row({"data": {"type": "DELETE"}}) is None
        assert extract_row({"data": "garbage"}) is None
