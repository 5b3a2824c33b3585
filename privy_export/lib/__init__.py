"""Export library modules.

This package contains the building blocks of the user export: backoff and
retry, the paginated API client, run-state stores, the CSV sink and the
driver that ties them together.
"""

from privy_export.lib.backoff import BackoffController
from privy_export.lib.client import ClientStats, Page, PrivyClient, parse_page
from privy_export.lib.config import ExportConfig, load_config, unique_output_path
from privy_export.lib.dedup import DedupIndex
from privy_export.lib.driver import ExportContext, ExportDriver, ExportResult, ExportState
from privy_export.lib.env import expand_env_vars, expand_options, load_env_file
from privy_export.lib.errors import (
    ConfigurationError,
    ExhaustedRetriesError,
    ExportError,
    MalformedResponseError,
    NetworkFailureError,
    PaginationLoopError,
    RateLimitedError,
    StateIOError,
    UpstreamError,
)
from privy_export.lib.logging import JSONFormatter, setup_logging
from privy_export.lib.resilience import RetryPolicy, retry_call
from privy_export.lib.sink import CsvSink, format_user_row
from privy_export.lib.state import (
    CursorStore,
    FileStateStore,
    MemoryStateStore,
    PassStartStore,
    StateStore,
    WatermarkStore,
)

__all__ = [
    # Backoff / retry
    "BackoffController",
    "RetryPolicy",
    "retry_call",
    # Client
    "ClientStats",
    "Page",
    "PrivyClient",
    "parse_page",
    # Config
    "ExportConfig",
    "load_config",
    "unique_output_path",
    "expand_env_vars",
    "expand_options",
    "load_env_file",
    # Driver
    "ExportContext",
    "ExportDriver",
    "ExportResult",
    "ExportState",
    # State / output
    "CsvSink",
    "DedupIndex",
    "format_user_row",
    "CursorStore",
    "FileStateStore",
    "MemoryStateStore",
    "PassStartStore",
    "StateStore",
    "WatermarkStore",
    # Errors
    "ConfigurationError",
    "ExhaustedRetriesError",
    "ExportError",
    "MalformedResponseError",
    "NetworkFailureError",
    "PaginationLoopError",
    "RateLimitedError",
    "StateIOError",
    "UpstreamError",
    # Logging
    "JSONFormatter",
    "setup_logging",
]
