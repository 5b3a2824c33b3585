"""Export driver: walks the upstream pages and checkpoints after each one.

State machine:

    START -> PAGING -> (COOLDOWN -> PAGING)* -> DONE
    any state -> FAILED on a non-retryable error

A crash at any point loses at most the page in flight. The cursor on disk
always names the next page still to be written, and the dedup index keeps
a replayed page from producing duplicate rows.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx

from privy_export.lib.client import Page, PrivyClient
from privy_export.lib.config import ExportConfig
from privy_export.lib.dedup import DedupIndex
from privy_export.lib.errors import PaginationLoopError
from privy_export.lib.sink import CsvSink
from privy_export.lib.state import CursorStore, PassStartStore, StateStore, WatermarkStore

logger = logging.getLogger(__name__)

__all__ = [
    "RESUME_MESSAGE",
    "ExportState",
    "ExportContext",
    "ExportResult",
    "ExportDriver",
]

RESUME_MESSAGE = "Current cursor saved. Run the export again to resume from where it left off."


class ExportState(Enum):
    START = "start"
    PAGING = "paging"
    COOLDOWN = "cooldown"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ExportResult:
    """Counters and outcome of one invocation."""

    output_path: str
    new_records: int = 0
    duplicates: int = 0
    processed: int = 0
    pages: int = 0
    resumed: bool = False
    since: Optional[int] = None
    watermark: Optional[int] = None
    requests: int = 0
    rate_limited: int = 0
    network_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output_path": self.output_path,
            "new_records": self.new_records,
            "duplicates": self.duplicates,
            "processed": self.processed,
            "pages": self.pages,
            "resumed": self.resumed,
            "since": self.since,
            "watermark": self.watermark,
            "requests": self.requests,
            "rate_limited": self.rate_limited,
            "network_failures": self.network_failures,
        }


@dataclass
class ExportContext:
    """Collaborators of one export run, built once at startup."""

    config: ExportConfig
    client: PrivyClient
    cursor_store: CursorStore
    watermark_store: WatermarkStore
    pass_start_store: PassStartStore
    sink: CsvSink
    dedup: Optional[DedupIndex] = None
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.time

    @classmethod
    def from_config(
        cls,
        config: ExportConfig,
        *,
        store: Optional[StateStore] = None,
        client: Optional[PrivyClient] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "ExportContext":
        """Wire up file-backed stores, the CSV sink and an HTTP client.

        Args:
            config: Resolved configuration
            store: State store override (defaults to config.state_store())
            client: Client override (defaults to one built from config)
            sleep: Sleep function shared by the client and the driver
            clock: Returns the current unix time in seconds
            transport: httpx transport for the default client
        """
        store = store or config.state_store()
        if client is None:
            client = PrivyClient.from_config(config, sleep=sleep, transport=transport)
        return cls(
            config=config,
            client=client,
            cursor_store=CursorStore(store),
            watermark_store=WatermarkStore(store),
            pass_start_store=PassStartStore(store),
            sink=CsvSink(config.output_file),
            sleep=sleep,
            clock=clock,
        )


def _format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class ExportDriver:
    """Runs one export pass (or the remainder of an interrupted one)."""

    def __init__(self, context: ExportContext) -> None:
        self.context = context
        self.state = ExportState.START
        self.result = ExportResult(output_path=str(context.sink.path))
        self.dedup: DedupIndex = context.dedup if context.dedup is not None else DedupIndex()
        self._cursor: Optional[str] = None
        self._since: Optional[int] = None
        self._pass_start: Optional[int] = None
        self._next_cooldown_at = context.config.users_batch_size

    def run(self) -> ExportResult:
        """Export every remaining page.

        Raises:
            ExportError: Any non-retryable failure. The cursor is left at the
                         last page that was fully written.
        """
        try:
            self._start()
            self._page_all()
            self._finish()
        except Exception as exc:
            self.state = ExportState.FAILED
            logger.warning("Error during user fetching: %s", exc)
            logger.info(RESUME_MESSAGE)
            raise
        finally:
            self._collect_client_stats()
        logger.debug("Export result: %s", self.result.to_dict())
        return self.result

    def _collect_client_stats(self) -> None:
        stats = self.context.client.stats
        self.result.requests = stats.requests
        self.result.rate_limited = stats.rate_limited
        self.result.network_failures = stats.network_failures

    def _start(self) -> None:
        ctx = self.context
        self.state = ExportState.START
        invocation_started_at = int(ctx.clock())

        self._cursor = ctx.cursor_store.load()
        if self._cursor:
            self.result.resumed = True
            stored_start = ctx.pass_start_store.load()
            self._pass_start = stored_start or invocation_started_at
            if stored_start is None:
                ctx.pass_start_store.save(self._pass_start)
            logger.info("Resuming user fetch from saved cursor: %s", self._cursor)
        else:
            if ctx.config.fetch_new_only:
                self._since = ctx.watermark_store.load()
            self._pass_start = invocation_started_at
            ctx.pass_start_store.save(self._pass_start)
            if self._since is not None:
                logger.info(
                    "Fetching only users created after %s", _format_timestamp(self._since)
                )
            else:
                logger.info("Starting fresh user fetch from Privy...")
        self.result.since = self._since

        if ctx.dedup is None:
            self.dedup = DedupIndex.from_sink(ctx.sink.path)
        ctx.sink.ensure_header()

    def _maybe_cool_down(self) -> None:
        ctx = self.context
        if self.result.new_records < self._next_cooldown_at:
            return
        batch_size = ctx.config.users_batch_size
        while self._next_cooldown_at <= self.result.new_records:
            self._next_cooldown_at += batch_size

        self.state = ExportState.COOLDOWN
        logger.info(
            "Reached %d users. Taking a %g second break to avoid rate limits...",
            self.result.new_records,
            ctx.config.batch_cooldown_seconds,
        )
        ctx.sleep(ctx.config.batch_cooldown_seconds)

    def _page_all(self) -> None:
        while True:
            self._maybe_cool_down()
            self.state = ExportState.PAGING

            requested = self._cursor
            page = self.context.client.fetch_page(cursor=requested, since=self._since)
            self.result.pages += 1
            if page.next_cursor is not None and page.next_cursor == requested:
                raise PaginationLoopError(page.next_cursor)

            self._write_page(page)
            if page.is_last:
                return
            self._cursor = page.next_cursor

    def _write_page(self, page: Page) -> None:
        ctx = self.context
        fresh: List[Dict[str, Any]] = []
        duplicates = 0
        for record in page.records:
            record_id = str(record["id"])
            if record_id in self.dedup:
                duplicates += 1
                continue
            self.dedup.add(record_id)
            fresh.append(record)

        ctx.sink.append(fresh)
        # Checkpoint only after the rows are on disk.
        ctx.cursor_store.save(page.next_cursor)

        self.result.new_records += len(fresh)
        self.result.duplicates += duplicates
        self.result.processed += len(page)
        if len(page):
            logger.info(
                "Processed %d users (%d new, %d duplicates, total new: %d)",
                len(page),
                len(fresh),
                duplicates,
                self.result.new_records,
            )

    def _finish(self) -> None:
        ctx = self.context
        self.state = ExportState.DONE
        ctx.cursor_store.clear()
        ctx.pass_start_store.clear()
        if ctx.config.fetch_new_only and self._pass_start is not None:
            ctx.watermark_store.save(self._pass_start)
            self.result.watermark = self._pass_start
            logger.debug(
                "Saved watermark %s to %s", self._pass_start, ctx.watermark_store.location
            )
        logger.info(
            "Successfully exported %d users to %s",
            self.result.new_records,
            self.result.output_path,
        )
        stats = ctx.client.stats
        if stats.rate_limited or stats.network_failures:
            logger.info(
                "Made %d requests (%d rate limited, %d network failures)",
                stats.requests,
                stats.rate_limited,
                stats.network_failures,
            )
