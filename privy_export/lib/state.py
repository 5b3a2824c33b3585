"""Run-state persistence: cursor, watermark and pass start.

State is modelled as a small key-value store so the export driver never
touches files directly. The file-backed store keeps one plain-text value
per file, which keeps the cursor and timestamp files readable (and
editable) by an operator.

Keys used by the export:
    cursor      opaque pagination token of the pass in flight
    watermark   unix seconds; records created up to here are exported
    pass_start  unix seconds at which the pass in flight began
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from privy_export.lib.errors import StateIOError

logger = logging.getLogger(__name__)

__all__ = [
    "CURSOR_KEY",
    "WATERMARK_KEY",
    "PASS_START_KEY",
    "StateStore",
    "FileStateStore",
    "MemoryStateStore",
    "CursorStore",
    "TimestampStore",
    "WatermarkStore",
    "PassStartStore",
]

CURSOR_KEY = "cursor"
WATERMARK_KEY = "watermark"
PASS_START_KEY = "pass_start"


class StateStore(ABC):
    """Minimal key-value store for run state."""

    @abstractmethod
    def load(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""

    @abstractmethod
    def save(self, key: str, value: str) -> None:
        """Persist ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def clear(self, key: str) -> bool:
        """Remove ``key``. Returns True if something was removed."""

    def describe(self, key: str) -> str:
        return key


class FileStateStore(StateStore):
    """One single-value text file per key.

    Example:
        store = FileStateStore({
            "cursor": "privy_cursor.txt",
            "watermark": "last_fetch_timestamp.txt",
        })
        store.save("cursor", "abc123")
    """

    def __init__(self, paths: Mapping[str, Union[str, Path]]) -> None:
        self.paths: Dict[str, Path] = {key: Path(p) for key, p in paths.items()}

    def _path(self, key: str) -> Path:
        try:
            return self.paths[key]
        except KeyError:
            raise KeyError(f"No state file configured for key '{key}'") from None

    def describe(self, key: str) -> str:
        return str(self._path(key))

    def load(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            logger.debug("No %s state file at %s", key, path)
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StateIOError(
                f"Failed to read {key} state",
                path=str(path),
                operation="read",
                original_error=exc,
            ) from exc

    def save(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write-then-rename so a crash never leaves a half-written value.
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise StateIOError(
                f"Failed to write {key} state",
                path=str(path),
                operation="write",
                original_error=exc,
            ) from exc
        logger.debug("Saved %s state to %s", key, path)

    def clear(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StateIOError(
                f"Failed to delete {key} state",
                path=str(path),
                operation="delete",
                original_error=exc,
            ) from exc
        logger.debug("Deleted %s state file %s", key, path)
        return True


class MemoryStateStore(StateStore):
    """In-process store, for tests and embedding."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self.values: Dict[str, str] = dict(initial or {})

    def load(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def save(self, key: str, value: str) -> None:
        self.values[key] = value

    def clear(self, key: str) -> bool:
        return self.values.pop(key, None) is not None


class CursorStore:
    """The resumption checkpoint of the pass in flight."""

    def __init__(self, store: StateStore, key: str = CURSOR_KEY) -> None:
        self.store = store
        self.key = key

    def load(self) -> Optional[str]:
        raw = self.store.load(self.key)
        if raw is None:
            return None
        cursor = raw.strip()
        return cursor or None

    def save(self, cursor: Optional[str]) -> None:
        # An empty file reads back as "no cursor".
        self.store.save(self.key, cursor or "")

    def clear(self) -> bool:
        return self.store.clear(self.key)

    @property
    def location(self) -> str:
        return self.store.describe(self.key)


class TimestampStore:
    """An integer unix timestamp (seconds) kept under one key."""

    def __init__(self, store: StateStore, key: str) -> None:
        self.store = store
        self.key = key

    def load(self) -> Optional[int]:
        raw = self.store.load(self.key)
        if raw is None:
            return None
        text = raw.strip()
        if not text:
            return None
        try:
            value = int(text)
        except ValueError:
            logger.warning(
                "Ignoring invalid %s value %r in %s",
                self.key,
                text,
                self.location,
            )
            return None
        if value <= 0:
            logger.warning("Ignoring non-positive %s value %d", self.key, value)
            return None
        return value

    def save(self, timestamp: int) -> None:
        self.store.save(self.key, str(int(timestamp)))

    def clear(self) -> bool:
        return self.store.clear(self.key)

    @property
    def location(self) -> str:
        return self.store.describe(self.key)


class WatermarkStore(TimestampStore):
    """High-water mark of the last complete pass."""

    def __init__(self, store: StateStore, key: str = WATERMARK_KEY) -> None:
        super().__init__(store, key)


class PassStartStore(TimestampStore):
    """Start time of the pass in flight, reused as its watermark on resume."""

    def __init__(self, store: StateStore, key: str = PASS_START_KEY) -> None:
        super().__init__(store, key)
