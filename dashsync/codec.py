"""Snapshot codec for dashsync.

Builds one serializable snapshot from the domain stores and applies a
snapshot back onto them. Wire names are camelCase so records stay readable
by the web client sharing the same ``user_data`` table.
"""

import copy
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from .stores import DomainStores
from .types import SNAPSHOT_VERSION, LocalApplyFailure, Snapshot, parse_datetime

logger = logging.getLogger(__name__)

# wire section -> {wire field: store field}; the section name is also the store name
SNAPSHOT_SECTIONS: Dict[str, Dict[str, str]] = {
    "app": {
        "calendar": "calendar",
        "prayers": "prayers",
        "quranProgress": "quran_progress",
        "tasks": "tasks",
        "notes": "notes",
        "focusSessions": "focus_sessions",
    },
    "habits": {
        "habits": "habits",
        "habitLogs": "habit_logs",
    },
    "reminders": {
        "reminders": "reminders",
        "viewMode": "view_mode",
        "timelineZoom": "timeline_zoom",
        "visibleCategories": "visible_categories",
        "selectedDate": "selected_date",
        "lastUpdateTime": "last_update_time",
    },
}

# Wire fields holding datetimes, serialized as ISO strings
DATE_FIELDS: Dict[str, frozenset] = {
    "reminders": frozenset({"selectedDate"}),
}


def _serialize_date(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str) and value:
        return value
    return None


def build_snapshot(stores: DomainStores, now: Optional[datetime] = None) -> Snapshot:
    """Build a fresh snapshot from the current value of every store."""
    now = now or datetime.now(timezone.utc)
    payload: Dict[str, Dict[str, Any]] = {}

    for section, fields in SNAPSHOT_SECTIONS.items():
        state = stores.get(section).get_state()
        dates = DATE_FIELDS.get(section, frozenset())
        out: Dict[str, Any] = {}
        for wire_name, store_name in fields.items():
            value = state.get(store_name)
            if wire_name in dates:
                out[wire_name] = _serialize_date(value)
            else:
                out[wire_name] = copy.deepcopy(value)
        payload[section] = out

    return Snapshot(version=SNAPSHOT_VERSION, updated_at=now.isoformat(), payload=payload)


def _apply_section(stores: DomainStores, section: str, incoming: Any) -> None:
    if not isinstance(incoming, Mapping):
        raise LocalApplyFailure(section, f"expected a mapping, got {type(incoming).__name__}")

    dates = DATE_FIELDS.get(section, frozenset())
    update: Dict[str, Any] = {}

    for wire_name, store_name in SNAPSHOT_SECTIONS[section].items():
        value = incoming.get(wire_name)
        if value is None:
            continue
        if wire_name in dates:
            revived = value if isinstance(value, datetime) else parse_datetime(value)
            if revived is None:
                logger.debug(f"Ignoring unparsable {section}.{wire_name}: {value!r}")
                continue
            update[store_name] = revived
        else:
            update[store_name] = copy.deepcopy(value)

    stores.get(section).set_state(update)


def apply_snapshot(stores: DomainStores, snapshot: Snapshot) -> None:
    """Replace store fields with the snapshot's values.

    Fields missing (or None) in the snapshot keep their local value.
    Unknown or malformed sections are skipped.
    """
    for section, incoming in snapshot.payload.items():
        if section not in SNAPSHOT_SECTIONS:
            logger.debug(f"Skipping unknown snapshot section {section!r}")
            continue
        try:
            _apply_section(stores, section, incoming)
        except LocalApplyFailure as e:
            logger.warning(str(e))


def fingerprint(snapshot: Snapshot) -> str:
    """Content hash of a snapshot.

    ``updated_at`` is excluded: two builds of unchanged state fingerprint
    the same.
    """
    content = snapshot.to_dict()
    content.pop("updated_at", None)
    canonical = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
