"""
sniwatch/data/storage.py

Key/value snapshot storage.

PURPOSE:
    Holds the only cross-session state of the pipeline: the two window
    snapshots and the ASN table. Each key maps to one JSON document that is
    overwritten wholesale on every write (last writer wins, no locking).

ERROR POLICY:
    Quota, permission and corruption failures never reach the caller. They are
    raised as StorageError inside the store, logged at WARNING, and surface as
    "no value" (get -> None, set/remove -> False).
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from sniwatch.base.exceptions import ErrorCode, StorageError

logger = logging.getLogger(__name__)

_SAFE_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]+")


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> bool: ...

    def remove(self, key: str) -> bool: ...


class MemoryStore:
    """In-process store. Values round-trip through JSON like the file store."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"[Storage] Discarding corrupt value for {key!r}: {e}")
            return None

    def set(self, key: str, value: Any) -> bool:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning(f"[Storage] Cannot serialize {key!r}: {e}")
            return False
        return True

    def set_raw(self, key: str, raw: str) -> None:
        """Store an undecoded payload as-is."""
        self._data[key] = raw

    def remove(self, key: str) -> bool:
        self._data.pop(key, None)
        return True

    def __contains__(self, key: str) -> bool:
        return key in self._data


class JsonFileStore:
    """
    One `<key>.json` file per key under `base_dir`.

    Writes go to a temp file in the same directory and are moved into place
    with os.replace, so a reader never sees a half-written snapshot.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def path_for(self, key: str) -> Path:
        safe = _SAFE_KEY_RE.sub("_", key).strip("._") or "default"
        return self.base_dir / f"{safe}.json"

    def get(self, key: str) -> Optional[Any]:
        try:
            return self._read(key)
        except StorageError as e:
            logger.warning(f"[Storage] {e}")
            return None

    def set(self, key: str, value: Any) -> bool:
        try:
            self._write(key, value)
        except StorageError as e:
            logger.warning(f"[Storage] {e}")
            return False
        return True

    def remove(self, key: str) -> bool:
        path = self.path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"[Storage] Failed to remove {path}: {e}")
            return False
        return True

    def _read(self, key: str) -> Optional[Any]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            data = path.read_bytes()
        except OSError as e:
            raise StorageError(
                ErrorCode.STORAGE_READ_FAILED,
                f"Failed to read snapshot {key!r}",
                details={"path": str(path), "error": str(e)},
            ) from e
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageError(
                ErrorCode.STORAGE_CORRUPT,
                f"Snapshot {key!r} is not valid JSON",
                details={"path": str(path), "error": str(e)},
            ) from e

    def _write(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(
                ErrorCode.STORAGE_WRITE_FAILED,
                f"Snapshot {key!r} is not serializable",
                details={"error": str(e)},
            ) from e

        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StorageError(
                ErrorCode.STORAGE_WRITE_FAILED,
                f"Failed to write snapshot {key!r}",
                details={"path": str(path), "error": str(e)},
            ) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
