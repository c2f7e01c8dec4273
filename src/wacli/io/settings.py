"""Settings file I/O for wacli.

Manages a general-purpose JSON settings file at XDG_CONFIG_HOME/wacli/settings.json.

This module is a STABLE BOUNDARY.
Import as: import wacli.io.settings
"""

import json
import os
from pathlib import Path

import wacli.io.persistence


def get_config_path() -> Path:
    """Return path to settings file.

    Uses XDG_CONFIG_HOME (default ~/.config) / wacli / settings.json.
    """
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "wacli" / "settings.json"


def load_settings() -> dict:
    """Load settings from JSON file. Returns empty dict on missing/corrupt file."""
    path = get_config_path()
    # [LAW:dataflow-not-control-flow] Always attempt read; empty dict is the "no data" value.
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def save_settings(data: dict) -> None:
    """Atomic write of settings dict to JSON file."""
    wacli.io.persistence.write_json_atomic(get_config_path(), data)
