"""Observable domain stores for the dashboard.

Each functional area owns one store. The sync engine only reads whole
states (to build snapshots) and replaces fields wholesale (to apply them);
what a task or a habit means is the business of the owning area.
"""

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Tuple

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class Store:
    """Observable state container with shallow-merge updates.

    Args:
        name: Area name, used in logs.
        initial: Initial state mapping.
    """

    def __init__(self, name: str, initial: Mapping[str, Any]):
        self.name = name
        self._state: Dict[str, Any] = dict(initial)
        self._listeners: List[Listener] = []

    def get_state(self) -> Dict[str, Any]:
        """Return a shallow copy of the current state."""
        return dict(self._state)

    def set_state(self, partial: Mapping[str, Any]) -> None:
        """Shallow-merge ``partial`` into the state and notify subscribers.

        Subscribers are notified on every call, even when nothing changed.
        """
        self._state = {**self._state, **partial}
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.exception(f"Store {self.name!r} listener failed: {e}")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns an idempotent unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


def _default_app_state() -> Dict[str, Any]:
    return {
        "calendar": {"events": []},
        "prayers": {"method": None, "location": None, "adjustments": {}},
        "quran_progress": {"lastSurah": 1, "lastAyah": 1, "khatmas": 0},
        "tasks": [],
        "notes": [],
        "focus_sessions": [],
    }


def _default_habit_state() -> Dict[str, Any]:
    return {"habits": [], "habit_logs": []}


def _default_reminder_state() -> Dict[str, Any]:
    return {
        "reminders": [],
        "view_mode": "list",
        "timeline_zoom": 1,
        "visible_categories": [],
        "selected_date": datetime.now(timezone.utc),
        "last_update_time": None,
    }


@dataclass
class DomainStores:
    """The stores whose state is synchronized across devices."""

    app: Store
    habits: Store
    reminders: Store

    @classmethod
    def default(cls) -> "DomainStores":
        return cls(
            app=Store("app", _default_app_state()),
            habits=Store("habits", _default_habit_state()),
            reminders=Store("reminders", _default_reminder_state()),
        )

    def items(self) -> Iterator[Tuple[str, Store]]:
        yield "app", self.app
        yield "habits", self.habits
        yield "reminders", self.reminders

    def get(self, name: str) -> Store:
        return getattr(self, name)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Subscribe ``listener`` to every store.

        Returns a single disposer that releases all subscriptions together.
        """
        stack = ExitStack()
        for _, store in self.items():
            stack.callback(store.subscribe(listener))
        return stack.close
