"""
ReplyStore: persistent set of correspondents that already got the greeting.

The file is a JSON array of correspondent ids, rewritten in full on every
change. In-memory state is authoritative for the running process; the file
is best-effort durability.
"""
from __future__ import annotations

import fcntl
import json
import logging
from pathlib import Path
from typing import List

from autoreply import perf

log = logging.getLogger(__name__)


class ReplyStore:
    """Ordered, de-duplicated set of greeted correspondent ids backed by a JSON file."""

    def __init__(self, store_file: Path):
        self._file = store_file
        self._ids: dict[str, None] = {}  # dict keeps insertion order
        self.load()

    @property
    def path(self) -> Path:
        return self._file

    def load(self) -> None:
        """Load ids from disk. Missing or unreadable files leave the store empty."""
        self._ids = {}
        if not self._file.exists():
            log.info(f"No reply store at {self._file}, starting empty")
            return
        try:
            data = json.loads(self._file.read_text())
        except (OSError, ValueError) as e:
            log.error(f"Failed to load reply store {self._file}: {e}")
            return
        if not isinstance(data, list) or not all(isinstance(x, str) for x in data):
            log.error(f"Reply store {self._file} is not a list of ids, starting empty")
            return
        self._ids = dict.fromkeys(data)
        log.info(f"Loaded {len(self._ids)} replied correspondents")

    def save(self) -> None:
        """Atomically rewrite the store file. Raises OSError on failure."""
        with perf.timed("store_save_ms", component="store"):
            self._file.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._file.with_suffix(".tmp")
            with open(tmp_path, "w") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                f.write(json.dumps(list(self._ids)))
            tmp_path.rename(self._file)

    def has(self, chat_id: str) -> bool:
        return chat_id in self._ids

    def mark_replied(self, chat_id: str) -> bool:
        """Record that chat_id was greeted. Returns False if it already was.

        A failed save is logged and the in-memory add is kept.
        """
        if chat_id in self._ids:
            return False
        self._ids[chat_id] = None
        try:
            self.save()
        except OSError as e:
            log.error(f"Failed to persist reply store after adding {chat_id}: {e}")
            perf.error("store_save_failed", component="store")
        perf.gauge("replied_count", len(self._ids), component="store")
        return True

    def all(self) -> List[str]:
        return list(self._ids)

    def __contains__(self, chat_id: object) -> bool:
        return chat_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)
