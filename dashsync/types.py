"""
Shared sync types for dashsync.

Snapshots, remote records and status values are the vocabulary between the
codec, the gateways and the sync session. They are immutable: a new state
is always a new value.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

# Wire format tag for snapshots. Bump when the payload layout changes.
SNAPSHOT_VERSION = 1

# Top-level keys of the serialized snapshot that are not payload sections
_ENVELOPE_KEYS = frozenset({"version", "updated_at"})


# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string, returning None for empty or invalid input."""
    if not s or not isinstance(s, str):
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None


# === Errors ===


class SyncError(Exception):
    """Base class for sync engine errors."""


class TransportFailure(SyncError):
    """Raised when the remote store rejects a request or is unreachable."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class LocalApplyFailure(SyncError):
    """A payload section could not be applied to the local stores.

    The codec applies leniently, so this is logged rather than raised.
    """

    def __init__(self, section: str, reason: str):
        super().__init__(f"Cannot apply section {section!r}: {reason}")
        self.section = section
        self.reason = reason


# === Snapshot ===


@dataclass(frozen=True)
class Snapshot:
    """One versioned aggregate of all synchronized dashboard state."""

    version: int
    updated_at: str
    payload: Mapping[str, Any]

    def __post_init__(self):
        sections = {
            name: MappingProxyType(dict(fields)) if isinstance(fields, Mapping) else fields
            for name, fields in self.payload.items()
        }
        object.__setattr__(self, "payload", MappingProxyType(sections))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the wire layout stored in the remote ``data`` column."""
        data: Dict[str, Any] = {"version": self.version, "updated_at": self.updated_at}
        for name, fields in self.payload.items():
            data[name] = dict(fields) if isinstance(fields, Mapping) else fields
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        """Build a snapshot from its wire layout.

        Malformed sections are kept as-is; the codec skips them on apply.
        """
        version = data.get("version")
        payload = {name: section for name, section in data.items() if name not in _ENVELOPE_KEYS}
        return cls(
            version=version if isinstance(version, int) else SNAPSHOT_VERSION,
            updated_at=data.get("updated_at") or "",
            payload=payload,
        )


@dataclass(frozen=True)
class RemoteRecord:
    """The single authoritative stored snapshot for one user."""

    user_id: str
    data: Snapshot
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RemoteRecord":
        data = row.get("data") or {}
        if isinstance(data, Snapshot):
            snapshot = data
        else:
            snapshot = Snapshot.from_dict(data)
        return cls(
            user_id=row.get("user_id", ""),
            data=snapshot,
            updated_at=row.get("updated_at") or snapshot.updated_at or None,
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "data": self.data.to_dict(),
            "updated_at": self.updated_at,
        }


# === Status ===


@dataclass(frozen=True)
class SyncStatus:
    """Sync status exposed to the view layer."""

    syncing: bool = False
    last_synced_at: Optional[str] = None
    sync_error: Optional[str] = None
