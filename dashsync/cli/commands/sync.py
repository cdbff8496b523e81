"""Sync commands for dashsync CLI: the "sync now" button and status line."""

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from dashsync.codec import build_snapshot, fingerprint
from dashsync.identity import IdentityProvider, SyncController, bind_supabase_auth
from dashsync.persistence import LocalStateFile
from dashsync.session import SyncSession
from dashsync.stores import DomainStores
from dashsync.types import SyncStatus, TransportFailure

if TYPE_CHECKING:
    from dashsync.config import Settings
    from dashsync.gateway.base import RemoteGateway

logger = logging.getLogger(__name__)


def _print_json(data: Dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))


def _status_dict(status: SyncStatus) -> Dict[str, Any]:
    return {
        "syncing": status.syncing,
        "last_synced_at": status.last_synced_at,
        "sync_error": status.sync_error,
    }


def _print_status(status: SyncStatus, as_json: bool) -> None:
    if as_json:
        _print_json(_status_dict(status))
    elif status.sync_error:
        print(f"⚠ Sync failed: {status.sync_error}")
    elif status.last_synced_at:
        print(f"✓ Synced (last sync: {status.last_synced_at})")
    else:
        print("✓ Nothing to sync")


def _new_session(settings: "Settings", stores: DomainStores, gateway: "RemoteGateway") -> SyncSession:
    return SyncSession(
        stores,
        gateway,
        debounce_seconds=settings.debounce_seconds,
        periodic_pull_seconds=settings.periodic_pull_seconds,
    )


def cmd_sync(args, settings: "Settings", gateway: Optional["RemoteGateway"] = None) -> int:
    """Handle sync subcommands. Returns the process exit code."""
    return asyncio.run(_run(args, settings, gateway))


async def _run(args, settings: "Settings", gateway: Optional["RemoteGateway"]) -> int:
    state = LocalStateFile(Path(args.state) if args.state else settings.resolved_state_path())
    stores = DomainStores.default()
    if state.load_into(stores):
        logger.debug(f"Loaded local state from {state.path}")

    supabase_client = None
    if gateway is None:
        from dashsync.gateway.supabase import SupabaseGateway

        supabase_gateway = await SupabaseGateway.connect(settings)
        supabase_client = supabase_gateway.client
        gateway = supabase_gateway

    user_id = args.user or settings.user_id

    if args.sync_action == "watch":
        return await watch(args, settings, stores, state, gateway, user_id, supabase_client)

    if not user_id:
        print("✗ No identity: pass --user or set DASHSYNC_USER_ID")
        return 1

    if args.sync_action == "status":
        return await _status(args, stores, gateway, user_id, state)

    session = _new_session(settings, stores, gateway)
    session.open(user_id)
    try:
        if args.sync_action == "now":
            await session.trigger_sync(force=True)
        elif args.sync_action == "pull":
            await session.pull_remote_and_merge()
        elif args.sync_action == "push":
            try:
                await session.push_local(force=True)
            except TransportFailure as e:
                logger.debug(f"Push failed: {e}")
        else:
            raise ValueError(f"Unknown sync action: {args.sync_action}")

        status = session.status
        if args.sync_action != "push":
            state.save(stores)
    finally:
        await session.stop()

    _print_status(status, getattr(args, "json", False))
    return 1 if status.sync_error else 0


async def _status(
    args,
    stores: DomainStores,
    gateway: "RemoteGateway",
    user_id: str,
    state: LocalStateFile,
) -> int:
    local_fp = fingerprint(build_snapshot(stores))
    info: Dict[str, Any] = {
        "user_id": user_id,
        "state_path": str(state.path),
        "local_state": state.exists(),
        "local_fingerprint": local_fp,
        "remote_fingerprint": None,
        "remote_updated_at": None,
        "in_sync": False,
        "error": None,
    }

    try:
        record = await gateway.fetch(user_id)
    except TransportFailure as e:
        info["error"] = e.reason
        record = None

    if record is not None:
        info["remote_fingerprint"] = fingerprint(record.data)
        info["remote_updated_at"] = record.updated_at
        info["in_sync"] = info["remote_fingerprint"] == local_fp

    if args.json:
        _print_json(info)
    else:
        print(f"User:          {user_id}")
        print(f"Local state:   {state.path}{'' if info['local_state'] else ' (not saved yet)'}")
        if info["error"]:
            print(f"⚠ Remote unreachable: {info['error']}")
        elif record is None:
            print("Remote:        no record yet")
        else:
            print(f"Remote:        updated {info['remote_updated_at']}")
            print("✓ In sync" if info["in_sync"] else "↕ Local and remote differ")

    return 1 if info["error"] else 0


async def watch(
    args,
    settings: "Settings",
    stores: DomainStores,
    state: LocalStateFile,
    gateway: "RemoteGateway",
    user_id: Optional[str],
    supabase_client: Any = None,
    stop_event: Optional[asyncio.Event] = None,
) -> int:
    """Keep syncing until interrupted (or ``stop_event`` is set)."""
    identity = IdentityProvider(user_id)
    unbind_auth: Optional[Callable[[], None]] = None
    if user_id is None:
        if supabase_client is None:
            print("✗ No identity: pass --user or set DASHSYNC_USER_ID")
            return 1
        unbind_auth = await bind_supabase_auth(supabase_client, identity)

    controller = SyncController(identity, stores, gateway, settings)
    controller.subscribe_status(lambda status: _print_status(status, False) if not status.syncing else None)
    detach_state = state.attach(stores)
    stop_event = stop_event or asyncio.Event()

    controller.activate()
    print(f"Watching for changes as {identity.current or '(signed out)'}; Ctrl-C to stop")
    try:
        await stop_event.wait()
    finally:
        await controller.shutdown()
        detach_state()
        if unbind_auth is not None:
            unbind_auth()
        state.save(stores)
    return 0
