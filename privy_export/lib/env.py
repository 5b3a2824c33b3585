"""Environment variable utilities.

Provides expansion of ${VAR_NAME} patterns in configuration values,
boolean flag parsing and loading of .env files.

Uses python-dotenv for .env file loading.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from dotenv import load_dotenv

__all__ = ["expand_env_vars", "expand_options", "load_env_file", "parse_bool"]

# Pattern for ${VAR_NAME} or $VAR_NAME
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load environment variables from a .env file.

    Args:
        path: Path to .env file. If None, searches for .env in current
              directory and parent directories.
        override: If True, override existing environment variables.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    return load_dotenv(dotenv_path=path, override=override)


def parse_bool(value: Union[str, bool, None], *, default: bool = False) -> bool:
    """Interpret an environment-style flag ("true", "1", "yes", ...)."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"Not a boolean value: {value!r}")


def expand_env_vars(
    value: str,
    *,
    strict: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Expand environment variables in a string.

    Supports both ${VAR_NAME} and $VAR_NAME syntax.

    Example:
        >>> os.environ["PRIVY_APP_ID"] = "app-123"
        >>> expand_env_vars("${PRIVY_APP_ID}")
        'app-123'
    """
    env = os.environ if environ is None else environ

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1) or match.group(2)
        env_value = env.get(var_name)
        if env_value is None:
            if strict:
                raise KeyError(f"Environment variable not set: {var_name}")
            return str(match.group(0))
        return env_value

    return ENV_VAR_PATTERN.sub(replacer, value)


def expand_options(
    options: Mapping[str, Any],
    *,
    strict: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Recursively expand environment variables in an options dict."""
    result: Dict[str, Any] = {}

    for key, value in options.items():
        if isinstance(value, str):
            result[key] = expand_env_vars(value, strict=strict, environ=environ)
        elif isinstance(value, Mapping):
            result[key] = expand_options(value, strict=strict, environ=environ)
        elif isinstance(value, list):
            result[key] = [
                expand_env_vars(item, strict=strict, environ=environ)
                if isinstance(item, str)
                else item
                for item in value
            ]
        else:
            result[key] = value

    return result
