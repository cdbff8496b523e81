"""Remote store gateway protocol.

The sync session talks to the remote copy only through this interface, so
the backing technology (Supabase today, anything with upsert/fetch/notify
tomorrow) can be swapped without touching the engine.
"""

from typing import Any, Callable, Optional, Protocol, runtime_checkable

from dashsync.types import RemoteRecord, Snapshot

ChangeCallback = Callable[[RemoteRecord], None]


@runtime_checkable
class RemoteGateway(Protocol):
    """One versioned document per user, with change notifications.

    Every method raises ``TransportFailure`` when the remote store rejects
    the request or cannot be reached.
    """

    async def upsert(self, user_id: str, snapshot: Snapshot) -> None:
        """Create or wholesale-replace the record for ``user_id``."""
        ...

    async def fetch(self, user_id: str) -> Optional[RemoteRecord]:
        """Fetch the record for ``user_id``, or ``None`` when it does not exist."""
        ...

    async def subscribe(self, user_id: str, on_change: ChangeCallback) -> Any:
        """Deliver every change to the record of ``user_id`` to ``on_change``.

        Returns an opaque handle for ``unsubscribe``.
        """
        ...

    async def unsubscribe(self, handle: Any) -> None:
        """Release a subscription returned by ``subscribe``."""
        ...
