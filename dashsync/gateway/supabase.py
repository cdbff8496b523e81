"""Supabase remote store.

One row per user in the ``user_data`` table::

    user_id     text primary key
    data        jsonb        -- the snapshot, opaque to the database
    updated_at  timestamptz  -- mirrors data.updated_at

Changes are delivered through a realtime ``postgres_changes`` channel
filtered on the user's row.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import httpx
from postgrest.exceptions import APIError

from supabase import AsyncClient, acreate_client

from dashsync.config import USER_DATA_TABLE, Settings
from dashsync.types import RemoteRecord, Snapshot, TransportFailure

from .base import ChangeCallback

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (APIError, httpx.HTTPError, OSError)


def _error_message(e: Exception) -> str:
    if isinstance(e, APIError):
        return e.message or str(e)
    return str(e) or e.__class__.__name__


def extract_row(payload: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Pull the new row out of a realtime ``postgres_changes`` payload."""
    data = payload.get("data", payload)
    if not isinstance(data, Mapping):
        return None
    row = data.get("record") or data.get("new")
    return dict(row) if isinstance(row, Mapping) else None


class SupabaseGateway:
    """Remote gateway over a Supabase async client.

    Args:
        client: An authenticated ``supabase.AsyncClient``.
        table: Table holding one snapshot row per user.
    """

    def __init__(self, client: AsyncClient, table: str = USER_DATA_TABLE):
        self._client = client
        self._table = table

    @classmethod
    async def connect(cls, settings: Settings) -> "SupabaseGateway":
        url, key = settings.require_supabase()
        client = await acreate_client(url, key)
        return cls(client, table=settings.table)

    @property
    def client(self) -> AsyncClient:
        return self._client

    async def upsert(self, user_id: str, snapshot: Snapshot) -> None:
        row = {"user_id": user_id, "data": snapshot.to_dict(), "updated_at": snapshot.updated_at}
        try:
            await self._client.table(self._table).upsert(row).execute()
        except TRANSPORT_ERRORS as e:
            raise TransportFailure(_error_message(e)) from e

    async def fetch(self, user_id: str) -> Optional[RemoteRecord]:
        try:
            response = await (
                self._client.table(self._table)
                .select("*")
                .eq("user_id", user_id)
                .maybe_single()
                .execute()
            )
        except TRANSPORT_ERRORS as e:
            raise TransportFailure(_error_message(e)) from e

        # maybe_single() yields no response at all when the row is missing
        if response is None or not response.data:
            return None
        return RemoteRecord.from_row(response.data)

    async def subscribe(self, user_id: str, on_change: ChangeCallback) -> Any:
        def handle(payload: Dict[str, Any]) -> None:
            row = extract_row(payload)
            if not row or not row.get("data"):
                logger.debug(f"Ignoring realtime event without data for {user_id}")
                return
            on_change(RemoteRecord.from_row(row))

        channel = self._client.channel(f"user_data_sync_{user_id}")
        channel.on_postgres_changes(
            "*",
            schema="public",
            table=self._table,
            filter=f"user_id=eq.{user_id}",
            callback=handle,
        )
        try:
            await channel.subscribe()
        except TRANSPORT_ERRORS as e:
            raise TransportFailure(_error_message(e)) from e
        return channel

    async def unsubscribe(self, handle: Any) -> None:
        try:
            await self._client.remove_channel(handle)
        except TRANSPORT_ERRORS as e:
            raise TransportFailure(_error_message(e)) from e
