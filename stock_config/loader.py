"""
Settings loader (``stock_config.loader``).

Responsibility
--------------
Reads ``defaults.yaml``, deep-merges an optional override file over it,
applies the environment override for the database URL, and parses the
result into frozen ``LedgerSettings``.  Runtime callers go through
``stock_config.get_settings()``.

Invariants enforced
-------------------
* Unknown keys are errors, not silently ignored.
* Cron expressions, batch sizes, retry and retention values are validated
  here, so a bad file fails at startup rather than at midnight.

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values or unknown keys  -> ``ValueError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from stock_batch.domain.schedule import parse_cron
from stock_config.settings import (
    CalendarSettings,
    DatabaseSettings,
    JobSettings,
    LedgerSettings,
    RolloverSettings,
)

ENV_CONFIG_PATH = "STOCK_LEDGER_CONFIG"
ENV_DATABASE_URL = "STOCK_LEDGER_DATABASE_URL"

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_SECTIONS = {
    "database": DatabaseSettings,
    "calendar": CalendarSettings,
    "rollover": RolloverSettings,
    "jobs": JobSettings,
}
_TOP_LEVEL = set(_SECTIONS) | {"log_level", "system_actor_id"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursive merge; mappings merge key by key, everything else replaces."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _section(cls: type, name: str, data: Any) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ValueError(f"'{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown key(s) in '{name}': {sorted(unknown)}")
    values = dict(data)
    if "retry_delays_seconds" in values:
        values["retry_delays_seconds"] = tuple(float(v) for v in values["retry_delays_seconds"])
    return cls(**values)


def _validate(settings: LedgerSettings) -> None:
    rollover = settings.rollover
    for label, expression in (
        ("rollover.cron", rollover.cron),
        ("jobs.pending_cron", settings.jobs.pending_cron),
        ("jobs.alert_cron", settings.jobs.alert_cron),
    ):
        try:
            parse_cron(expression)
        except ValueError as exc:
            raise ValueError(f"{label}: {exc}") from exc
    if rollover.max_attempts < 1:
        raise ValueError("rollover.max_attempts must be at least 1")
    if any(d < 0 for d in rollover.retry_delays_seconds):
        raise ValueError("rollover.retry_delays_seconds must not be negative")
    if rollover.insert_batch_size <= 0:
        raise ValueError("rollover.insert_batch_size must be positive")
    if rollover.retention_days < 0:
        raise ValueError("rollover.retention_days must not be negative")
    if not -12 <= settings.calendar.utc_offset_hours <= 14:
        raise ValueError("calendar.utc_offset_hours must be between -12 and 14")
    if settings.jobs.tick_interval_seconds <= 0:
        raise ValueError("jobs.tick_interval_seconds must be positive")


def parse_settings(data: Mapping[str, Any]) -> LedgerSettings:
    """Build validated LedgerSettings from a merged mapping."""
    unknown = set(data) - _TOP_LEVEL
    if unknown:
        raise ValueError(f"Unknown top-level key(s): {sorted(unknown)}")
    kwargs: dict[str, Any] = {
        name: _section(cls, name, data.get(name)) for name, cls in _SECTIONS.items()
    }
    if "log_level" in data:
        kwargs["log_level"] = str(data["log_level"]).upper()
    if "system_actor_id" in data:
        kwargs["system_actor_id"] = UUID(str(data["system_actor_id"]))
    settings = LedgerSettings(**kwargs)
    _validate(settings)
    return settings


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerSettings:
    """
    defaults.yaml <- override file <- environment.

    The override file is ``path`` if given, else ``$STOCK_LEDGER_CONFIG``
    if set.
    """
    env = os.environ if environ is None else environ
    data = load_yaml_file(DEFAULTS_PATH)
    override_path = path or env.get(ENV_CONFIG_PATH)
    if override_path:
        data = merge(data, load_yaml_file(Path(override_path)))
    database_url = env.get(ENV_DATABASE_URL)
    if database_url:
        data = merge(data, {"database": {"url": database_url}})
    return parse_settings(data)
