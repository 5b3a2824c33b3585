"""CSV output sink for exported users.

The sink is append-only. The first line is a fixed, unquoted header; every
following line is one fully quoted user row. Row layout:

    id, createdAt, isGuest, email, wallet, linkedAccounts
"""

from __future__ import annotations

import csv
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from privy_export.lib.errors import StateIOError

logger = logging.getLogger(__name__)

__all__ = ["CSV_HEADER", "CsvSink", "format_user_row", "find_linked_account"]

CSV_HEADER = "id,createdAt,isGuest,email,wallet,linkedAccounts"


def find_linked_account(record: Dict[str, Any], account_type: str) -> Optional[Dict[str, Any]]:
    """First linked account whose ``type`` equals ``account_type``."""
    for account in record.get("linked_accounts") or []:
        if isinstance(account, dict) and account.get("type") == account_type:
            return account
    return None


def format_user_row(record: Dict[str, Any]) -> List[str]:
    """Map one upstream user to its CSV columns."""
    email = find_linked_account(record, "email") or {}
    wallet = find_linked_account(record, "wallet") or {}
    linked = record.get("linked_accounts") or []
    created_at = record.get("created_at")

    return [
        str(record.get("id") or ""),
        "" if created_at in (None, "") else str(created_at),
        "true" if record.get("is_guest") else "false",
        str(email.get("address") or ""),
        str(wallet.get("address") or ""),
        str(len(linked)),
    ]


class CsvSink:
    """Append-only CSV file of exported users."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def _io_error(self, operation: str, exc: OSError) -> StateIOError:
        return StateIOError(
            f"Failed to {operation} output file",
            path=str(self.path),
            operation=operation,
            original_error=exc,
        )

    def is_empty(self) -> bool:
        try:
            return not self.path.exists() or self.path.stat().st_size == 0
        except OSError as exc:
            raise self._io_error("stat", exc) from exc

    def ensure_header(self) -> bool:
        """Write the header if the file is missing or empty."""
        if not self.is_empty():
            return False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8", newline="") as handle:
                handle.write(CSV_HEADER + "\n")
        except OSError as exc:
            raise self._io_error("write", exc) from exc
        logger.debug("Wrote CSV header to %s", self.path)
        return True

    def _ends_with_newline(self) -> bool:
        with self.path.open("rb") as handle:
            handle.seek(-1, os.SEEK_END)
            return handle.read(1) == b"\n"

    def append(self, records: Iterable[Dict[str, Any]]) -> int:
        """Append one row per record. Returns the number of rows written."""
        rows = [format_user_row(r) for r in records]
        if not rows:
            return 0
        try:
            # A torn final line from an interrupted run must not swallow the
            # first new row.
            needs_newline = not self.is_empty() and not self._ends_with_newline()
            with self.path.open("a", encoding="utf-8", newline="") as handle:
                if needs_newline:
                    handle.write("\n")
                writer = csv.writer(handle, quoting=csv.QUOTE_ALL, lineterminator="\n")
                writer.writerows(rows)
        except OSError as exc:
            raise self._io_error("append to", exc) from exc
        return len(rows)
