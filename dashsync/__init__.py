"""
dashsync - Cross-device state sync for the productivity dashboard.

Keeps locally edited dashboard state converged with one remote record per
user, last-writer-wins at snapshot granularity.
"""

from .codec import apply_snapshot, build_snapshot, fingerprint
from .identity import IdentityProvider, SyncController
from .session import SyncSession
from .stores import DomainStores, Store
from .types import RemoteRecord, Snapshot, SyncStatus, TransportFailure

try:
    from importlib.metadata import version

    __version__ = version("dashsync")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "DomainStores",
    "IdentityProvider",
    "RemoteRecord",
    "Snapshot",
    "Store",
    "SyncController",
    "SyncSession",
    "SyncStatus",
    "TransportFailure",
    "apply_snapshot",
    "build_snapshot",
    "fingerprint",
]
