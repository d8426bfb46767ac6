"""
In-memory key-value store.

A single lock serializes every operation on the entry map. Lookups and
inserts are O(1) and no I/O happens while the lock is held, so one
coarse-grained lock is enough.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Optional

from django.utils import timezone

from storage.conf import StoreConfig, load_store_config
from storage.models import Entry

logger = logging.getLogger(__name__)


class KeyValueStore:
    """
    Authorized, thread-safe mapping from key to Entry.

    The store is the only owner of its entries. Tokens are fixed at
    construction time and never change afterwards.

    Attributes:
        read_token: Token required by read requests
        write_token: Token required by write requests
        track_modified: Whether entries carry a last write timestamp
    """

    def __init__(
        self,
        read_token: str,
        write_token: str,
        track_modified: bool = True,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self._read_token = read_token
        self._write_token = write_token
        self._track_modified = track_modified
        self._clock = clock

        self._entries: Dict[str, Entry] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: StoreConfig) -> "KeyValueStore":
        return cls(
            read_token=config.read_token,
            write_token=config.write_token,
            track_modified=config.track_modified,
        )

    @property
    def read_token(self) -> str:
        return self._read_token

    @property
    def write_token(self) -> str:
        return self._write_token

    @property
    def track_modified(self) -> bool:
        return self._track_modified

    def get(self, key: str) -> Optional[Entry]:
        """
        Look up the entry for a key.

        Entries are immutable, so the returned snapshot is unaffected by
        later writes to the same key.

        Returns:
            The entry, or None if the key was never written
        """
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, value: str) -> None:
        """
        Insert or replace the entry for a key.

        The timestamp is taken while holding the lock, so concurrent writers
        to the same key are stamped in the order they commit. It never moves
        backwards for a key, even if the wall clock does.
        """
        with self._lock:
            modified_at = None
            if self._track_modified:
                modified_at = self._clock()
                previous = self._entries.get(key)
                if previous is not None and previous.modified_at > modified_at:
                    modified_at = previous.modified_at
            self._entries[key] = Entry(value=value, modified_at=modified_at)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_store: Optional[KeyValueStore] = None
_store_lock = threading.Lock()


def get_store() -> KeyValueStore:
    """Return the process-wide store, building it from configuration on first use."""
    global _store
    with _store_lock:
        if _store is None:
            _store = _build_store(load_store_config())
        return _store


def install_store(config: StoreConfig) -> KeyValueStore:
    """Replace the process-wide store with an empty one built from ``config``."""
    global _store
    with _store_lock:
        _store = _build_store(config)
        return _store


def reset_store() -> None:
    global _store
    with _store_lock:
        _store = None


def _build_store(config: StoreConfig) -> KeyValueStore:
    logger.info(
        f"Creating key-value store (port={config.port}, "
        f"track_modified={config.track_modified})"
    )
    return KeyValueStore.from_config(config)
