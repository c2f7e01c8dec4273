"""Runtime configuration: schema defaults ← settings file ← CLI overrides.

// [LAW:one-source-of-truth] All known settings and their defaults live in SCHEMA.
// [LAW:single-enforcer] _safe_persist is the single writer to disk.
"""

import logging
from pathlib import Path

import wacli.io.persistence
import wacli.io.settings

logger = logging.getLogger(__name__)

# [LAW:one-source-of-truth] All known settings and their defaults
SCHEMA: dict[str, object] = {
    "persist_interval_s": 15.0,
    "reconnect_delay_s": 5.0,
    "sync_hold_s": 2.0,
    "chats_per_page": 15,
    "message_window": 50,
    "data_dir": None,
    "theme": None,
}

# Keys the user may change at runtime; written back to the settings file.
_PERSISTED_KEYS = frozenset({"theme"})


class AppConfig:
    """Resolved settings. Unknown keys are rejected."""

    def __init__(self, values: dict[str, object]):
        self._values = dict(values)

    def get(self, key: str):
        if key not in SCHEMA:
            raise KeyError(f"Unknown setting: {key!r}")
        return self._values.get(key, SCHEMA[key])

    def set(self, key: str, value) -> None:
        if key not in SCHEMA:
            raise KeyError(f"Unknown setting: {key!r}")
        self._values[key] = value
        if key in _PERSISTED_KEYS:
            _safe_persist({key: value})

    def number(self, key: str) -> float:
        """Numeric setting, falling back to the schema default on junk."""
        value = self.get(key)
        try:
            number = float(value)
        except (TypeError, ValueError):
            logger.warning("Setting %s=%r is not a number; using default", key, value)
            number = float(SCHEMA[key])  # type: ignore[arg-type]
        return number if number > 0 else float(SCHEMA[key])  # type: ignore[arg-type]

    @property
    def data_dir(self) -> Path:
        configured = self.get("data_dir")
        if configured:
            return Path(str(configured)).expanduser()
        return wacli.io.persistence.default_data_dir()


def create(initial_overrides: dict | None = None) -> AppConfig:
    """Create config, seeded from disk."""
    disk_data = wacli.io.settings.load_settings()
    # Filter disk data to known keys only
    merged = {k: disk_data.get(k, default) for k, default in SCHEMA.items()}
    if initial_overrides:
        merged.update({k: v for k, v in initial_overrides.items() if k in SCHEMA and v is not None})
    return AppConfig(merged)


def _safe_persist(snapshot: dict) -> None:
    """Write settings to disk. Catches and logs I/O errors."""
    try:
        existing = wacli.io.settings.load_settings()
        existing.update(snapshot)
        wacli.io.settings.save_settings(existing)
    except Exception:
        logger.exception("Failed to persist settings to disk")
