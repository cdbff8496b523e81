"""In-process remote store.

Keeps one record per user in memory and delivers change notifications on
the event loop, out of band from the upsert that caused them. Several
sessions sharing one instance behave like devices sharing one account.
"""

import asyncio
import copy
import itertools
import logging
from typing import Dict, List, Optional, Tuple

from dashsync.types import RemoteRecord, Snapshot, TransportFailure

from .base import ChangeCallback

logger = logging.getLogger(__name__)


class InMemoryGateway:
    """Remote gateway backed by a dict.

    Args:
        fail_upserts: When set, every upsert raises ``TransportFailure`` with
            this reason.
        fail_fetches: Same for fetches.
    """

    def __init__(self, fail_upserts: Optional[str] = None, fail_fetches: Optional[str] = None):
        self.fail_upserts = fail_upserts
        self.fail_fetches = fail_fetches
        self.upsert_calls = 0
        self.fetch_calls = 0
        # Ordered log of ("upsert" | "fetch", user_id) for ordering assertions
        self.calls: List[Tuple[str, str]] = []
        self._records: Dict[str, dict] = {}
        self._subscribers: Dict[int, Tuple[str, ChangeCallback]] = {}
        self._handles = itertools.count(1)

    def record(self, user_id: str) -> Optional[RemoteRecord]:
        """Current stored record, without counting as a fetch."""
        row = self._records.get(user_id)
        return RemoteRecord.from_row(copy.deepcopy(row)) if row else None

    def put(self, user_id: str, data: dict, updated_at: Optional[str] = None) -> None:
        """Seed a raw record without notifying subscribers."""
        self._records[user_id] = {
            "user_id": user_id,
            "data": copy.deepcopy(data),
            "updated_at": updated_at or data.get("updated_at"),
        }

    async def upsert(self, user_id: str, snapshot: Snapshot) -> None:
        self.upsert_calls += 1
        self.calls.append(("upsert", user_id))
        if self.fail_upserts:
            raise TransportFailure(self.fail_upserts)

        row = RemoteRecord(user_id=user_id, data=snapshot, updated_at=snapshot.updated_at).to_row()
        self._records[user_id] = copy.deepcopy(row)
        self._notify(user_id)

    async def fetch(self, user_id: str) -> Optional[RemoteRecord]:
        self.fetch_calls += 1
        self.calls.append(("fetch", user_id))
        if self.fail_fetches:
            raise TransportFailure(self.fail_fetches)
        return self.record(user_id)

    async def subscribe(self, user_id: str, on_change: ChangeCallback) -> int:
        handle = next(self._handles)
        self._subscribers[handle] = (user_id, on_change)
        return handle

    async def unsubscribe(self, handle: int) -> None:
        self._subscribers.pop(handle, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _notify(self, user_id: str) -> None:
        loop = asyncio.get_running_loop()
        for sub_user, callback in list(self._subscribers.values()):
            if sub_user != user_id:
                continue
            record = self.record(user_id)
            loop.call_soon(self._deliver, callback, record)

    @staticmethod
    def _deliver(callback: ChangeCallback, record: RemoteRecord) -> None:
        try:
            callback(record)
        except Exception as e:
            logger.exception(f"Change subscriber failed: {e}")
