"""
Key/value storage tiers for the stats cache.

Both tiers behave like a browser Web Storage area: string keys, string
values, an optional size quota, and a `keys()` listing. The session tier
lives in memory and disappears with the process; the durable tier is a
single JSON object persisted to disk.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple


class StorageError(Exception):
    """Raised when a storage tier cannot complete a read or write."""


class StorageQuotaError(StorageError):
    """Raised when a write would push a store over its size quota."""


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class KeyValueStore:
    """Base class for string-keyed, string-valued stores.

    Subclasses implement `_commit()` to persist a candidate mapping. The
    in-memory mapping is only replaced once the commit succeeds, so a failed
    write leaves the store exactly as it was.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._lock = threading.RLock()
        self._data: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            self._refresh()
            return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        if not isinstance(key, str) or not isinstance(value, str):
            raise StorageError("Keys and values must be strings")

        with self._lock:
            self._refresh()
            candidate = dict(self._data)
            candidate[key] = value
            if self.quota_bytes is not None:
                used = sum(_entry_size(k, v) for k, v in candidate.items())
                if used > self.quota_bytes:
                    raise StorageQuotaError(
                        f"Writing '{key}' needs {used} bytes, quota is {self.quota_bytes}"
                    )
            self._commit(candidate)
            self._data = candidate

    def remove_item(self, key: str) -> None:
        """Remove a key. Removing a missing key is a no-op."""
        with self._lock:
            self._refresh()
            if key not in self._data:
                return
            candidate = dict(self._data)
            del candidate[key]
            self._commit(candidate)
            self._data = candidate

    def keys(self) -> List[str]:
        """Return a snapshot list of the current keys."""
        with self._lock:
            self._refresh()
            return list(self._data.keys())

    def clear(self) -> None:
        with self._lock:
            self._commit({})
            self._data = {}

    def used_bytes(self) -> int:
        with self._lock:
            self._refresh()
            return sum(_entry_size(k, v) for k, v in self._data.items())

    def __len__(self) -> int:
        with self._lock:
            self._refresh()
            return len(self._data)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            self._refresh()
            return key in self._data

    def _commit(self, candidate: Dict[str, str]) -> None:
        """Persist the candidate mapping. No-op for memory-only stores."""
        pass

    def _refresh(self) -> None:
        """Pick up changes made outside this instance. No-op for memory-only stores."""
        pass


class MemoryStore(KeyValueStore):
    """Session tier: lives as long as the process (or the test) does."""


class JsonFileStore(KeyValueStore):
    """Durable tier persisted as one JSON object file.

    Writes go to a temp file in the same directory and are moved into place
    with os.replace, so a crash mid-write never leaves a truncated file.

    Other processes (the maintenance tool, a second server) may rewrite the
    file. The store re-reads it whenever its stat signature changes, so a
    commit never writes back entries another process removed.
    """

    def __init__(self, path, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes=quota_bytes)
        self.path = Path(path)
        self._file_state: Optional[Tuple[int, int, int]] = None
        self._load()

    def _stat(self) -> Optional[Tuple[int, int, int]]:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Could not stat {self.path}: {e}") from e
        # os.replace gives every commit a new inode
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _refresh(self) -> None:
        if self._stat() != self._file_state:
            self._load()

    def _load(self) -> None:
        self._file_state = self._stat()
        if self._file_state is None:
            if self._data:
                logging.debug(f"[Storage] {self.path} was removed, dropping {len(self._data)} keys")
            self._data = {}
            return

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except (json.JSONDecodeError, IOError, OSError) as e:
            logging.warning(f"[Storage] Could not load {self.path}: {type(e).__name__}: {e}")
            return

        if not isinstance(raw, dict):
            logging.warning(f"[Storage] Ignoring {self.path}: top-level value is not an object")
            return

        self._data = {k: v for k, v in raw.items() if isinstance(k, str) and isinstance(v, str)}
        skipped = len(raw) - len(self._data)
        if skipped:
            logging.warning(f"[Storage] Skipped {skipped} non-string entries in {self.path}")
        logging.debug(f"[Storage] Loaded {len(self._data)} keys from {self.path}")

    def _commit(self, candidate: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(candidate, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, str(self.path))
            except Exception:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        except (IOError, OSError) as e:
            raise StorageError(f"Could not write {self.path}: {e}") from e
        self._file_state = self._stat()
