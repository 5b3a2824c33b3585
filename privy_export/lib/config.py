"""Export configuration.

Values are layered, lowest precedence first:

1. dataclass defaults
2. an optional YAML file (``${VAR}`` references are expanded)
3. environment variables (see ENV_FIELDS)
4. explicit overrides, normally from CLI flags

Example YAML (export.yaml):
    app_id: ${PRIVY_APP_ID}
    app_secret: ${PRIVY_APP_SECRET}
    output_file: ./exports/users.csv
    fetch_new_only: true
    users_batch_size: 1000
    batch_cooldown_seconds: 5
"""

from __future__ import annotations

import logging
import os
from dataclasses import InitVar, asdict, dataclass, fields, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from privy_export.lib.backoff import BackoffController
from privy_export.lib.client import DEFAULT_BASE_URL
from privy_export.lib.env import expand_options, parse_bool
from privy_export.lib.errors import ConfigurationError
from privy_export.lib.state import CURSOR_KEY, PASS_START_KEY, WATERMARK_KEY, FileStateStore

logger = logging.getLogger(__name__)

__all__ = [
    "ENV_FIELDS",
    "ExportConfig",
    "load_config",
    "load_yaml_options",
    "unique_output_path",
]

# Environment variable -> config field
ENV_FIELDS: Dict[str, str] = {
    "PRIVY_APP_ID": "app_id",
    "PRIVY_APP_SECRET": "app_secret",
    "PRIVY_API_URL": "base_url",
    "OUTPUT_FILE": "output_file",
    "CURSOR_FILE": "cursor_file",
    "TIMESTAMP_FILE": "timestamp_file",
    "PASS_START_FILE": "pass_start_file",
    "FETCH_NEW_ONLY": "fetch_new_only",
    "UNIQUE_FILES": "unique_files",
}

_BOOL_FIELDS = {"fetch_new_only", "unique_files"}
_INT_FIELDS = {"max_requests_per_minute", "users_batch_size", "max_network_retries"}
_FLOAT_FIELDS = {
    "rate_limit_seconds",
    "batch_cooldown_seconds",
    "initial_backoff_seconds",
    "max_backoff_seconds",
    "backoff_factor",
    "jitter_factor",
    "timeout_seconds",
}
_SECRET_FIELDS = {"app_secret"}


@dataclass
class ExportConfig:
    """Everything one export run needs to know."""

    app_id: str = ""
    app_secret: str = ""
    base_url: str = DEFAULT_BASE_URL

    # Output and run state
    output_file: str = "users.csv"
    cursor_file: str = "privy_cursor.txt"
    timestamp_file: str = "last_fetch_timestamp.txt"
    pass_start_file: Optional[str] = None  # defaults to <cursor_file>.started

    fetch_new_only: bool = False
    unique_files: bool = False

    # Pacing
    rate_limit_seconds: float = 1.0
    max_requests_per_minute: int = 30
    users_batch_size: int = 2500
    batch_cooldown_seconds: float = 10.0

    # Backoff and retries
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 60.0
    backoff_factor: float = 2.0
    jitter_factor: float = 0.1
    max_network_retries: int = 5
    timeout_seconds: float = 30.0

    # --status and --reset work without credentials
    check_credentials: InitVar[bool] = True

    def __post_init__(self, check_credentials: bool) -> None:
        if not self.pass_start_file:
            self.pass_start_file = f"{self.cursor_file}.started"

        errors = self._validate(check_credentials)
        if errors:
            error_msg = "\n".join(f"  - {e}" for e in errors)
            raise ConfigurationError(
                f"Export configuration errors:\n{error_msg}",
                details={"errors": errors},
                suggestion="Set the missing values in the environment, .env or config file.",
            )

    def _validate(self, check_credentials: bool = True) -> List[str]:
        errors: List[str] = []

        if check_credentials:
            if not self.app_id:
                errors.append("PRIVY_APP_ID is required")
            if not self.app_secret:
                errors.append("PRIVY_APP_SECRET is required")
        if not self.base_url.startswith(("http://", "https://")):
            errors.append(f"base_url must be an http(s) URL, got '{self.base_url}'")

        for name in ("output_file", "cursor_file", "timestamp_file"):
            if not getattr(self, name):
                errors.append(f"{name} must not be empty")

        if self.rate_limit_seconds < 0:
            errors.append("rate_limit_seconds must be >= 0")
        if self.max_requests_per_minute <= 0:
            errors.append("max_requests_per_minute must be > 0")
        if self.users_batch_size <= 0:
            errors.append("users_batch_size must be > 0")
        if self.batch_cooldown_seconds < 0:
            errors.append("batch_cooldown_seconds must be >= 0")

        if self.initial_backoff_seconds <= 0:
            errors.append("initial_backoff_seconds must be > 0")
        if self.max_backoff_seconds < self.initial_backoff_seconds:
            errors.append("max_backoff_seconds must be >= initial_backoff_seconds")
        if self.backoff_factor < 1:
            errors.append("backoff_factor must be >= 1")
        if not 0 <= self.jitter_factor < 1:
            errors.append("jitter_factor must be in [0, 1)")
        if self.max_network_retries < 0:
            errors.append("max_network_retries must be >= 0")
        if self.timeout_seconds <= 0:
            errors.append("timeout_seconds must be > 0")

        return errors

    @property
    def pacing_seconds(self) -> float:
        """Minimum gap after every successful request."""
        return max(self.rate_limit_seconds, 60.0 / self.max_requests_per_minute)

    def backoff(self) -> BackoffController:
        return BackoffController(
            initial_delay=self.initial_backoff_seconds,
            max_delay=self.max_backoff_seconds,
            factor=self.backoff_factor,
            jitter_factor=self.jitter_factor,
        )

    def state_store(self) -> FileStateStore:
        return FileStateStore(
            {
                CURSOR_KEY: self.cursor_file,
                WATERMARK_KEY: self.timestamp_file,
                PASS_START_KEY: str(self.pass_start_file),
            }
        )

    def with_unique_output(self, now: Optional[datetime] = None) -> "ExportConfig":
        """Copy of this config writing to a timestamped output file."""
        return replace(self, output_file=unique_output_path(self.output_file, now))

    def to_dict(self, *, redact: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if redact:
            for name in _SECRET_FIELDS:
                if data.get(name):
                    data[name] = "***"
        return data


def unique_output_path(path: Union[str, Path], now: Optional[datetime] = None) -> str:
    """Insert a UTC timestamp before the extension.

    Example:
        >>> unique_output_path("users.csv", datetime(2025, 1, 15, 10, 30, 0, 123000, tzinfo=timezone.utc))
        'users_2025-01-15T10-30-00-123Z.csv'
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"

    path = Path(path)
    if path.suffix:
        name = f"{path.stem}_{stamp}{path.suffix}"
    else:
        name = f"{path.name}_{stamp}"
    return str(path.with_name(name))


def load_yaml_options(
    config_path: Union[str, Path],
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Read a flat YAML mapping of config fields, expanding ${VAR} references."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}",
            key="config",
        )

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax: {e}", key="config") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            "Configuration file must contain a mapping of settings",
            key="config",
            details={"type": type(raw).__name__},
        )

    known = {f.name for f in fields(ExportConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration keys: {', '.join(unknown)}",
            key="config",
            suggestion=f"Valid keys are: {', '.join(sorted(known))}",
        )

    return expand_options(raw, environ=environ)


def _coerce(name: str, value: Any) -> Any:
    if name in _BOOL_FIELDS:
        return parse_bool(value)
    if name in _INT_FIELDS:
        if isinstance(value, bool):
            raise ValueError(f"expected an integer, got {value!r}")
        return int(value)
    if name in _FLOAT_FIELDS:
        if isinstance(value, bool):
            raise ValueError(f"expected a number, got {value!r}")
        return float(value)
    return "" if value is None else str(value)


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    check_credentials: bool = True,
) -> ExportConfig:
    """Resolve the layered configuration into an ExportConfig.

    Args:
        config_path: Optional YAML file
        environ: Environment mapping (defaults to os.environ)
        overrides: Field values that win over everything else; None values
                   are ignored so unset CLI flags do not mask lower layers
        check_credentials: Require PRIVY_APP_ID and PRIVY_APP_SECRET

    Raises:
        ConfigurationError: Unreadable file, bad values or missing credentials
    """
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    if config_path:
        values.update(load_yaml_options(config_path, environ=env))
        logger.debug("Loaded configuration from %s", config_path)

    for var, name in ENV_FIELDS.items():
        raw = env.get(var)
        if raw is not None and raw != "":
            values[name] = raw

    for name, value in (overrides or {}).items():
        if value is not None:
            values[name] = value

    coerced: Dict[str, Any] = {}
    errors: List[str] = []
    for name, value in values.items():
        try:
            coerced[name] = _coerce(name, value)
        except (TypeError, ValueError) as e:
            errors.append(f"{name}: {e}")
    if errors:
        error_msg = "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(
            f"Invalid configuration values:\n{error_msg}",
            details={"errors": errors},
        )

    return ExportConfig(**coerced, check_credentials=check_credentials)
