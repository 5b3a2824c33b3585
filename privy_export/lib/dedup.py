"""In-memory index of user ids already present in the output file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator, Optional, Set, Union

from privy_export.lib.errors import StateIOError

logger = logging.getLogger(__name__)

__all__ = ["DedupIndex", "extract_id"]


def extract_id(line: str) -> Optional[str]:
    """Identifier in the first column of a CSV line, quotes stripped."""
    line = line.strip()
    if not line:
        return None
    first = line.split(",", 1)[0].replace('"', "").strip()
    return first or None


class DedupIndex:
    """Set of exported ids.

    The output file is the source of truth: the index is rebuilt from it on
    every run and is never written anywhere else.
    """

    def __init__(self, ids: Optional[Iterable[str]] = None) -> None:
        self._ids: Set[str] = set(ids or ())

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def contains(self, record_id: str) -> bool:
        return record_id in self._ids

    def add(self, record_id: str) -> None:
        self._ids.add(record_id)

    @classmethod
    def from_sink(cls, path: Union[str, Path]) -> "DedupIndex":
        """Load ids from an existing output file, skipping its header.

        Blank and unparseable lines are skipped; a missing file gives an
        empty index.
        """
        path = Path(path)
        index = cls()
        if not path.exists():
            return index

        logger.info("Loading existing user IDs from %s to prevent duplicates...", path)
        skipped = 0
        try:
            with path.open("r", encoding="utf-8", errors="replace", newline="") as handle:
                for line_number, line in enumerate(handle):
                    if line_number == 0:
                        continue
                    record_id = extract_id(line)
                    if record_id is None:
                        skipped += 1
                        continue
                    index.add(record_id)
        except OSError as exc:
            raise StateIOError(
                "Failed to read existing output file",
                path=str(path),
                operation="read",
                original_error=exc,
            ) from exc

        if skipped:
            logger.debug("Skipped %d blank or unparseable lines in %s", skipped, path)
        logger.info("Loaded %d existing user IDs.", len(index))
        return index
