"""Cross-device sync session.

SyncSession keeps the local domain stores and the single remote record of
one user converged:

- local edits are debounced and pushed as whole snapshots
- remote changes (realtime notifications or the periodic poll) are applied
  to the stores wholesale
- a fingerprint ledger drops no-op pushes and echoes of our own writes

Conflicts resolve last-writer-wins at snapshot granularity: whichever
upsert lands last replaces the remote record. Two devices editing inside
the same debounce window race, and the later one wins.
"""

import asyncio
import logging
from contextlib import ExitStack
from dataclasses import replace
from typing import Any, Callable, List, Optional

from .codec import apply_snapshot, build_snapshot, fingerprint
from .gateway.base import RemoteGateway
from .scheduler import AsyncioScheduler, Debouncer, PeriodicTimer, Scheduler
from .stores import DomainStores
from .types import RemoteRecord, Snapshot, SyncStatus, TransportFailure, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.18
DEFAULT_PERIODIC_PULL_SECONDS = 60.0

StatusListener = Callable[[SyncStatus], None]


class SyncSession:
    """Synchronization engine for one authenticated identity.

    Construct one per identity; ``start`` on sign-in, ``stop`` on sign-out.
    A stopped session keeps no ledger and may be started again.

    Args:
        stores: The domain stores to synchronize.
        gateway: Remote store holding one record per user.
        scheduler: Timer and task scheduling (defaults to the running loop).
        debounce_seconds: Quiet period before local edits are pushed.
        periodic_pull_seconds: Interval of the reconciliation poll.
    """

    def __init__(
        self,
        stores: DomainStores,
        gateway: RemoteGateway,
        *,
        scheduler: Optional[Scheduler] = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        periodic_pull_seconds: float = DEFAULT_PERIODIC_PULL_SECONDS,
    ):
        self._stores = stores
        self._gateway = gateway
        self._scheduler = scheduler or AsyncioScheduler()

        self.user_id: Optional[str] = None
        self._in_flight = False
        self._last_pushed_hash: Optional[str] = None
        self._last_applied_hash: Optional[str] = None
        # Digest of the upsert awaiting its ack; its realtime echo can arrive first
        self._sending_hash: Optional[str] = None
        # Bumped by every completed push; a pull that straddles one is stale
        self._push_generation = 0
        self._suppress_local_push = False

        self._debouncer = Debouncer(self._scheduler, debounce_seconds, self._on_debounce)
        self._poller = PeriodicTimer(self._scheduler, periodic_pull_seconds, self._on_poll)
        self._store_subscriptions: Optional[ExitStack] = None
        self._realtime_handle: Any = None

        self._status = SyncStatus()
        self._status_listeners: List[StatusListener] = []

    # === Status ===

    @property
    def active(self) -> bool:
        return self.user_id is not None

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def push_pending(self) -> bool:
        """True while local edits wait for the debounce timer."""
        return self._debouncer.pending

    def subscribe_status(self, listener: StatusListener) -> Callable[[], None]:
        """Call ``listener`` with the new status on every change."""
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def _update_status(self, **changes: Any) -> None:
        status = replace(self._status, **changes)
        if status == self._status:
            return
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.exception(f"Sync status listener failed: {e}")

    # === Lifecycle ===

    def open(self, user_id: str) -> None:
        """Bind the session to ``user_id`` without automatic triggers.

        Used for one-shot operations; ``start`` calls it first.
        """
        if self.user_id == user_id:
            return
        if self.user_id is not None:
            raise RuntimeError(
                f"Session already bound to {self.user_id!r}; stop it before switching identity"
            )
        self.user_id = user_id

    async def start(self, user_id: str) -> None:
        """Activate for ``user_id``.

        Subscribes to store and realtime changes, runs one forced two-way
        cycle (pull, then push), then starts the periodic reconciliation poll.
        """
        if self._store_subscriptions is not None and self.user_id == user_id:
            return
        self.open(user_id)
        logger.info(f"Starting sync session for {user_id}")

        self._store_subscriptions = ExitStack()
        self._store_subscriptions.callback(self._stores.subscribe(self.handle_local_change))

        try:
            handle = await self._gateway.subscribe(user_id, self.handle_remote_change)
        except TransportFailure as e:
            handle = None
            self._update_status(sync_error=e.reason)
            logger.warning(f"Realtime subscription failed, relying on periodic pull: {e.reason}")
        if self.user_id != user_id:
            # Stopped while subscribing
            if handle is not None:
                await self._gateway.unsubscribe(handle)
            return
        self._realtime_handle = handle

        await self.trigger_sync(force=True)
        if self.user_id != user_id:
            return
        self._poller.start()

    async def stop(self) -> None:
        """Deactivate: cancel timers, release subscriptions, discard the ledger."""
        if self.user_id is None:
            return
        logger.info(f"Stopping sync session for {self.user_id}")
        self.user_id = None

        self._poller.stop()
        self._debouncer.cancel()
        if self._store_subscriptions is not None:
            self._store_subscriptions.close()
            self._store_subscriptions = None

        handle, self._realtime_handle = self._realtime_handle, None
        if handle is not None:
            try:
                await self._gateway.unsubscribe(handle)
            except TransportFailure as e:
                logger.warning(f"Failed to release realtime subscription: {e.reason}")

        self._last_pushed_hash = None
        self._last_applied_hash = None
        self._sending_hash = None
        self._suppress_local_push = False
        self._update_status(syncing=False, last_synced_at=None, sync_error=None)

    def flush(self) -> Optional["asyncio.Task[Any]"]:
        """Best-effort push of unsaved edits at teardown.

        Fire-and-forget: returns the spawned task, which nobody is obliged
        to await and which is not retried on failure.
        """
        if self.user_id is None:
            return None
        self._debouncer.cancel()
        return self._scheduler.spawn(self.trigger_sync())

    # === Orchestration ===

    async def trigger_sync(self, force: bool = False) -> None:
        """Run one sync cycle.

        Non-forced cycles push local state if it changed and are skipped
        while another cycle is in flight. Forced cycles pull first, then
        push unconditionally. Transport failures are recorded in the status
        rather than raised.
        """
        if self.user_id is None:
            return
        if self._in_flight and not force:
            logger.debug("Sync already in flight, skipping")
            return

        self._in_flight = True
        try:
            if force:
                await self.pull_remote_and_merge()
                await self.push_local(force=True)
            else:
                await self.push_local(force=False)
        except TransportFailure as e:
            logger.warning(f"Sync cycle failed, local state kept: {e.reason}")
        finally:
            self._in_flight = False

    async def push_local(self, force: bool = False) -> None:
        """Upsert a fresh snapshot unless it matches the last one pushed.

        Raises:
            TransportFailure: The upsert failed; the ledger is left untouched
                so the same content is retried on the next cycle.
        """
        user_id = self.user_id
        if user_id is None:
            return

        snapshot = build_snapshot(self._stores)
        digest = fingerprint(snapshot)
        if not force and digest == self._last_pushed_hash:
            logger.debug("Local state unchanged since last push")
            return

        self._update_status(syncing=True)
        self._sending_hash = digest
        try:
            await self._upsert_remote(user_id, snapshot)
            if self.user_id != user_id:
                return
            self._last_pushed_hash = digest
            self._push_generation += 1
            self._update_status(last_synced_at=snapshot.updated_at)
            logger.info(f"Pushed snapshot {digest[:12]} for {user_id}")
        finally:
            self._sending_hash = None
            self._update_status(syncing=False)

    async def pull_remote_and_merge(self) -> None:
        """Fetch the remote record and apply it unless it is an echo."""
        user_id = self.user_id
        if user_id is None:
            return

        generation = self._push_generation
        self._update_status(syncing=True)
        try:
            record = await self._fetch_remote(user_id)
            if record is None or not record.data.payload or self.user_id != user_id:
                return
            if generation != self._push_generation:
                logger.debug("Discarding remote record fetched before a newer push")
                return
            digest = fingerprint(record.data)
            self._merge_incoming(record.data, digest)
            # Remote now holds this content; a local push of it would be a no-op
            self._last_pushed_hash = digest
            self._update_status(last_synced_at=record.updated_at or record.data.updated_at or utc_now())
        finally:
            self._update_status(syncing=False)

    # === Triggers ===

    def handle_remote_change(self, record: RemoteRecord) -> None:
        """Realtime notification: apply the pushed record unless it is an echo."""
        if self.user_id is None:
            return
        if record.user_id and record.user_id != self.user_id:
            logger.debug(f"Ignoring change for foreign user {record.user_id}")
            return
        if not record.data.payload:
            return

        digest = fingerprint(record.data)
        if not self._merge_incoming(record.data, digest):
            return
        self._last_pushed_hash = digest
        self._update_status(last_synced_at=record.updated_at or utc_now())

    def handle_local_change(self) -> None:
        """Store notification: schedule a debounced push."""
        if self.user_id is None:
            return
        if self._suppress_local_push:
            # Caused by our own remote apply
            return
        self._debouncer.mark()

    def _on_debounce(self) -> None:
        self._scheduler.spawn(self.trigger_sync())

    def _on_poll(self) -> None:
        if self._in_flight:
            logger.debug("Sync cycle in flight, skipping periodic pull")
            return
        self._scheduler.spawn(self.pull_remote_and_merge())

    # === Internals ===

    def _merge_incoming(self, snapshot: Snapshot, digest: str) -> bool:
        """Apply ``snapshot`` unless the ledger marks it as already known."""
        if digest in (self._last_pushed_hash, self._last_applied_hash, self._sending_hash):
            logger.debug(f"Remote snapshot {digest[:12]} is an echo, not applying")
            return False

        self._suppress_local_push = True
        try:
            apply_snapshot(self._stores, snapshot)
        finally:
            # Cleared on the next tick so notifications fired by the apply are still ignored
            self._scheduler.call_soon(self._release_suppression)
        self._last_applied_hash = digest
        logger.info(f"Applied remote snapshot {digest[:12]} (updated {snapshot.updated_at})")
        return True

    def _release_suppression(self) -> None:
        self._suppress_local_push = False

    async def _upsert_remote(self, user_id: str, snapshot: Snapshot) -> None:
        try:
            await self._gateway.upsert(user_id, snapshot)
        except TransportFailure as e:
            self._update_status(sync_error=e.reason)
            logger.warning(f"Cloud sync upsert failed: {e.reason}")
            raise
        self._update_status(sync_error=None)

    async def _fetch_remote(self, user_id: str) -> Optional[RemoteRecord]:
        try:
            record = await self._gateway.fetch(user_id)
        except TransportFailure as e:
            self._update_status(sync_error=e.reason)
            logger.warning(f"Cloud sync fetch failed: {e.reason}")
            return None
        self._update_status(sync_error=None)
        return record
