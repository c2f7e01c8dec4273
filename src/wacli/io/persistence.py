"""Durable JSON documents for client state.

Two independent documents under the data directory:

    state.json      {"chats": [...], "contacts": {...}, "messages": {...}}
    overrides.json  {"<identifier>": "<alias>"}

Writes are atomic (temp file + rename) so a crash mid-write leaves the
previous document intact.

This module is a STABLE BOUNDARY: no store imports.
"""

import json
import os
import tempfile
from pathlib import Path

STATE_FILE = "state.json"
OVERRIDES_FILE = "overrides.json"


def default_data_dir() -> Path:
    """WACLI_DATA_DIR, else XDG_DATA_HOME (default ~/.local/share) / wacli."""
    explicit = os.environ.get("WACLI_DATA_DIR")
    if explicit:
        return Path(explicit)
    data_home = os.environ.get("XDG_DATA_HOME", os.path.expanduser("~/.local/share"))
    return Path(data_home) / "wacli"


def state_path(data_dir: Path) -> Path:
    return Path(data_dir) / STATE_FILE


def overrides_path(data_dir: Path) -> Path:
    return Path(data_dir) / OVERRIDES_FILE


def read_json(path: Path) -> object | None:
    """Parsed document, or None when missing or corrupt."""
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, UnicodeDecodeError, OSError):
        return None


def write_json_atomic(path: Path, data: object) -> None:
    """Write JSON to ``path`` via temp file + rename.

    Creates parent directories if needed. Raises on failure after
    removing the temp file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    # Atomic: write temp → rename
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            f.write("\n")
        os.replace(tmp_path, path)
    except Exception:
        # Clean up temp file on failure
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
