"""
stock_config -- single public entrypoint for ledger settings.

Responsibility:
    ``get_settings()`` is the only way runtime code obtains configuration.
    No other component reads configuration files or environment variables.

Architecture position:
    Sits above ``stock_kernel`` and ``stock_batch``.  The kernel MUST NEVER
    import from ``stock_config``; callers (the admin CLI, an application's
    startup code) read settings here and pass plain values down.

Failure modes:
    - ``FileNotFoundError`` -- override file named but missing.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from stock_config.loader import ENV_CONFIG_PATH, ENV_DATABASE_URL, load_settings
from stock_config.settings import (
    CalendarSettings,
    DatabaseSettings,
    JobSettings,
    LedgerSettings,
    RolloverSettings,
)

_logger = logging.getLogger("stock_kernel.config")


def get_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerSettings:
    """The ONLY public configuration entrypoint."""
    settings = load_settings(path, environ)
    _logger.info(
        "stock_config_loaded",
        extra={
            "override": str(path) if path else None,
            "timezone": settings.calendar.timezone_name,
            "utc_offset_hours": settings.calendar.utc_offset_hours,
            "rollover_enabled": settings.rollover.enabled,
            "rollover_cron": settings.rollover.cron,
        },
    )
    return settings


__all__ = [
    "ENV_CONFIG_PATH",
    "ENV_DATABASE_URL",
    "CalendarSettings",
    "DatabaseSettings",
    "JobSettings",
    "LedgerSettings",
    "RolloverSettings",
    "get_settings",
]
