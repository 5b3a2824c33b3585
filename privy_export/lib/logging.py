"""Logging utilities for the exporter.

Provides a structured JSON logging option for scheduled runs whose output
is shipped to a log aggregator.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

__all__ = [
    "setup_logging",
    "JSONFormatter",
    "LOG_LEVEL_ENV",
    "LOG_FORMAT_ENV",
    "logging_options_from_env",
]

LOG_LEVEL_ENV = "EXPORT_LOG_LEVEL"
LOG_FORMAT_ENV = "EXPORT_LOG_FORMAT"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, timestamped with the record's creation time.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "INFO",
         "logger": "privy_export.lib.driver", "message": "Processed 100 users ..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def logging_options_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, bool]:
    """Read EXPORT_LOG_LEVEL / EXPORT_LOG_FORMAT into setup_logging kwargs.

    Unknown values fall back to INFO and human-readable output.
    """
    env = os.environ if environ is None else environ
    level = env.get(LOG_LEVEL_ENV, "").strip().upper()
    fmt = env.get(LOG_FORMAT_ENV, "").strip().lower()
    return {
        "verbose": level == "DEBUG",
        "json_format": fmt == "json",
    }


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure logging for an export run.

    Args:
        verbose: Enable debug-level logging
        json_format: Use JSON output format (for log aggregation)
        log_file: Optional file path to write logs to
    """
    level = logging.DEBUG if verbose else logging.INFO

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
