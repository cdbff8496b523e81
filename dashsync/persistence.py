"""Local copy of the domain stores on disk.

Keeps dashboard state across restarts so edits made while signed out are
still there to reconcile at the next sign-in. The file holds a snapshot in
the same wire layout as the remote record.
"""

import json
import logging
import os
from pathlib import Path
from typing import Callable

from .codec import apply_snapshot, build_snapshot
from .stores import DomainStores
from .types import Snapshot

logger = logging.getLogger(__name__)


class LocalStateFile:
    """JSON snapshot file holding the local dashboard state."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load_into(self, stores: DomainStores) -> bool:
        """Apply the saved snapshot to ``stores``.

        Returns:
            True if a snapshot was applied; False when the file is missing
            or unreadable (the stores are left untouched).
        """
        if not self.path.exists():
            return False
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable local state {self.path}: {e}")
            return False
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed local state {self.path}")
            return False

        apply_snapshot(stores, Snapshot.from_dict(data))
        return True

    def save(self, stores: DomainStores) -> None:
        """Atomically write the current store state."""
        snapshot = build_snapshot(stores)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(snapshot.to_dict(), f, indent=2, default=str)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)

    def attach(self, stores: DomainStores) -> Callable[[], None]:
        """Save after every store change. Returns a disposer."""

        def save_quietly() -> None:
            try:
                self.save(stores)
            except OSError as e:
                logger.warning(f"Failed to save local state to {self.path}: {e}")

        return stores.subscribe(save_quietly)
