"""
Configuration
=============

Environment variables are read exactly once, at process start, into an
immutable :class:`NextcloudConfig`.  The value is handed explicitly to the
server factory and the remote client; nothing else reads the environment.

Required variables are the Nextcloud base URL, the login name and an
app password.  Everything else has a sensible default that can be
overridden for non-standard installations.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

REQUIRED_ENV_VARS = ("NEXTCLOUD_URL", "NEXTCLOUD_USERNAME", "NEXTCLOUD_PASSWORD")


class ConfigError(RuntimeError):
    """Raised when required startup configuration is missing or invalid."""


@dataclass(frozen=True)
class NextcloudConfig:
    """Connection and serving settings for one Nextcloud account."""

    url: str
    username: str
    password: str
    tasks_calendar: str = "tasks"
    events_calendar: str = "personal"
    transport: str = "stdio"
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"


def _optional_env(env: Mapping[str, str], name: str, default: str) -> str:
    value = (env.get(name) or "").strip()
    return value or default


def load_config(environ: Optional[Mapping[str, str]] = None) -> NextcloudConfig:
    """Build a :class:`NextcloudConfig` from ``environ`` (``os.environ`` by default)."""
    env = os.environ if environ is None else environ
    missing = [name for name in REQUIRED_ENV_VARS if not (env.get(name) or "").strip()]
    if missing:
        raise ConfigError(
            "Missing required environment variable(s): " + ", ".join(missing)
        )

    transport = _optional_env(env, "MCP_TRANSPORT", "stdio").lower()
    if transport not in {"stdio", "http"}:
        raise ConfigError(f"Unsupported MCP_TRANSPORT: {transport}")

    port_raw = _optional_env(env, "PORT", "8000")
    try:
        port = int(port_raw)
    except ValueError:
        raise ConfigError(f"PORT must be an integer, got {port_raw!r}") from None

    log_level = _optional_env(env, "LOG_LEVEL", "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"Unknown LOG_LEVEL: {log_level}")

    return NextcloudConfig(
        # Trailing slashes would double up when resource paths are appended.
        url=env["NEXTCLOUD_URL"].strip().rstrip("/"),
        username=env["NEXTCLOUD_USERNAME"].strip(),
        password=env["NEXTCLOUD_PASSWORD"].strip(),
        tasks_calendar=_optional_env(env, "NEXTCLOUD_TASKS_CALENDAR", "tasks"),
        events_calendar=_optional_env(env, "NEXTCLOUD_EVENTS_CALENDAR", "personal"),
        transport=transport,
        host=_optional_env(env, "HOST", "127.0.0.1"),
        port=port,
        log_level=log_level,
    )
