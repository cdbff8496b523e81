"""Identity signal and sync activation.

The sync engine only needs to know who is signed in. ``IdentityProvider``
carries that signal; ``SyncController`` builds a fresh ``SyncSession`` when
an identity is acquired and tears it down when the identity is lost.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from .config import Settings, get_settings
from .gateway.base import RemoteGateway
from .scheduler import AsyncioScheduler, Scheduler
from .session import SyncSession
from .stores import DomainStores
from .types import SyncStatus

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[str]], None]


class IdentityProvider:
    """Nullable "current user" signal."""

    def __init__(self, user_id: Optional[str] = None):
        self._current = user_id
        self._listeners: List[IdentityListener] = []

    @property
    def current(self) -> Optional[str]:
        return self._current

    def set_identity(self, user_id: Optional[str]) -> None:
        """Update the identity; subscribers are notified only on change."""
        if user_id == self._current:
            return
        self._current = user_id
        for listener in list(self._listeners):
            try:
                listener(user_id)
            except Exception as e:
                logger.exception(f"Identity listener failed: {e}")

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


def _session_user_id(session: Any) -> Optional[str]:
    user = getattr(session, "user", None) if session is not None else None
    return getattr(user, "id", None)


async def bind_supabase_auth(client: Any, provider: IdentityProvider) -> Callable[[], None]:
    """Drive ``provider`` from a Supabase client's auth state.

    Seeds the identity from the restored session, then follows sign-in and
    sign-out events. Returns a function that stops following.
    """
    session = await client.auth.get_session()
    provider.set_identity(_session_user_id(session))

    def on_auth_change(event: Any, session: Any) -> None:
        logger.debug(f"Auth state change: {event}")
        provider.set_identity(_session_user_id(session))

    subscription = client.auth.on_auth_state_change(on_auth_change)
    return subscription.unsubscribe


class SyncController:
    """Activates a SyncSession for whoever is signed in.

    Identity transitions are chained so a stop always completes before the
    next start begins.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        stores: DomainStores,
        gateway: RemoteGateway,
        settings: Optional[Settings] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self._identity = identity
        self._stores = stores
        self._gateway = gateway
        self._settings = settings or get_settings()
        self._scheduler = scheduler or AsyncioScheduler()

        self.session: Optional[SyncSession] = None
        self._transition: Optional["asyncio.Task[Any]"] = None
        self._unsubscribe_identity: Optional[Callable[[], None]] = None
        self._status_listeners: List[Callable[[SyncStatus], None]] = []

    @property
    def status(self) -> SyncStatus:
        return self.session.status if self.session is not None else SyncStatus()

    def subscribe_status(self, listener: Callable[[SyncStatus], None]) -> Callable[[], None]:
        """Follow the status of whichever session is active."""
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def activate(self) -> None:
        """Start following the identity signal (and the current identity)."""
        if self._unsubscribe_identity is not None:
            return
        self._unsubscribe_identity = self._identity.subscribe(self._on_identity)
        if self._identity.current is not None:
            self._on_identity(self._identity.current)

    async def wait_idle(self) -> None:
        """Wait until pending identity transitions have completed."""
        while self._transition is not None and not self._transition.done():
            await asyncio.wait({self._transition})

    async def trigger_sync(self, force: bool = False) -> None:
        """Manual "sync now"; a no-op while signed out."""
        if self.session is not None:
            await self.session.trigger_sync(force=force)

    async def shutdown(self) -> None:
        """Flush unsaved edits (best effort, bounded) and stop syncing."""
        if self._unsubscribe_identity is not None:
            self._unsubscribe_identity()
            self._unsubscribe_identity = None
        await self.wait_idle()

        session, self.session = self.session, None
        if session is None:
            return
        task = session.flush()
        if task is not None:
            done, _ = await asyncio.wait({task}, timeout=self._settings.flush_timeout_seconds)
            if not done:
                logger.warning("Final sync flush did not complete before shutdown")
        await session.stop()

    def _on_identity(self, user_id: Optional[str]) -> None:
        previous = self._transition
        self._transition = self._scheduler.spawn(self._switch(previous, user_id))

    async def _switch(self, previous: Optional["asyncio.Task[Any]"], user_id: Optional[str]) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        if self.session is not None and self.session.user_id == user_id:
            return
        if self.session is not None:
            old, self.session = self.session, None
            await old.stop()
        if user_id is None:
            return

        session = SyncSession(
            self._stores,
            self._gateway,
            scheduler=self._scheduler,
            debounce_seconds=self._settings.debounce_seconds,
            periodic_pull_seconds=self._settings.periodic_pull_seconds,
        )
        session.subscribe_status(self._publish)
        self.session = session
        await session.start(user_id)

    def _publish(self, status: SyncStatus) -> None:
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.exception(f"Sync status listener failed: {e}")
