"""Hand downloaded media to the desktop's default viewer."""

import logging
import os
import shutil
import subprocess
import sys

logger = logging.getLogger(__name__)


def opener_command(path: str, platform: str = sys.platform) -> list[str] | None:
    """Command that opens ``path`` with the platform's default application."""
    if platform == "darwin":
        return ["open", path]
    if platform.startswith("win"):
        return ["cmd", "/c", "start", "", path]
    if shutil.which("xdg-open"):
        return ["xdg-open", path]
    return None


def open_media(path: str) -> bool:
    """Launch the default viewer for ``path`` without waiting for it."""
    if not os.path.exists(path):
        logger.warning("Media file vanished before opening: %s", path)
        return False
    command = opener_command(path)
    if command is None:
        logger.warning("No desktop opener available for %s", path)
        return False
    try:
        subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        logger.warning("Failed to open %s: %s", path, e)
        return False
    return True
