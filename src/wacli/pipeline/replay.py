"""Replay transport - drives the client from a recorded event stream.

A recording is JSON Lines. Each line is one of:

    {"event": "<transport event name>", "data": <payload>}
    {"groupMetadata": {"id": "<group id>", "subject": ..., "participants": [...]}}
    {"media": {"id": "<message id>", "path": "<local file>"}}

Events are emitted in file order through the same parse boundary a live
transport uses. Outbound actions are recorded in ``calls`` instead of being
sent anywhere.
"""

import asyncio
import json
import logging

from wacli.core.models import GroupMetadata
from wacli.pipeline.transport import EmitFn, PermissionDeniedError, TransportError

logger = logging.getLogger(__name__)


class Recording:
    """Parsed contents of a recording file."""

    def __init__(self):
        self.events: list[tuple[str, object]] = []
        self.group_metadata: dict[str, dict] = {}
        self.media: dict[str, str] = {}


def load_recording(path: str) -> Recording:
    """Load a JSON Lines recording.

    Raises:
        ValueError: If a line is not a recognised record
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If a line is not valid JSON
    """
    recording = Recording()
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            entry = json.loads(line)
            if not isinstance(entry, dict):
                raise ValueError(f"Line {lineno}: expected a JSON object")
            if "event" in entry:
                recording.events.append((str(entry["event"]), entry.get("data")))
            elif isinstance(entry.get("groupMetadata"), dict):
                meta = entry["groupMetadata"]
                if not isinstance(meta.get("id"), str):
                    raise ValueError(f"Line {lineno}: groupMetadata without id")
                recording.group_metadata[meta["id"]] = meta
            elif isinstance(entry.get("media"), dict):
                media = entry["media"]
                recording.media[str(media.get("id", ""))] = str(media.get("path", ""))
            else:
                raise ValueError(f"Line {lineno}: unknown record {sorted(entry)}")
    return recording


class ReplayTransport:
    """Transport that plays back a Recording and records outbound calls."""

    def __init__(self, recording: Recording | None = None, denied_groups: set[str] | None = None):
        self._recording = recording or Recording()
        self._denied = set(denied_groups or ())
        self.calls: list[tuple] = []
        self.connected = False

    async def connect(self, emit: EmitFn) -> None:
        self.connected = True
        self.calls.append(("connect",))
        for name, payload in self._recording.events:
            if not self.connected:
                break
            emit(name, payload)
            # Yield between events so the UI keeps rendering during long replays.
            await asyncio.sleep(0)
        logger.info("Replayed %d recorded events", len(self._recording.events))

    async def close(self) -> None:
        self.connected = False
        self.calls.append(("close",))

    async def send_text(self, chat_id: str, text: str, quoted_raw: dict | None = None) -> None:
        self.calls.append(("send_text", chat_id, text, quoted_raw))

    async def send_media(self, chat_id: str, file_path: str, kind: str) -> None:
        self.calls.append(("send_media", chat_id, file_path, kind))

    async def send_reaction(self, chat_id: str, message_raw: dict, emoji: str) -> None:
        self.calls.append(("send_reaction", chat_id, message_raw, emoji))

    async def mark_read(self, chat_id: str) -> None:
        self.calls.append(("mark_read", chat_id))

    async def fetch_group_metadata(self, chat_id: str) -> GroupMetadata:
        self.calls.append(("fetch_group_metadata", chat_id))
        if chat_id in self._denied:
            raise PermissionDeniedError(f"not-authorized: {chat_id}")
        raw = self._recording.group_metadata.get(chat_id)
        metadata = GroupMetadata.from_dict(raw)
        if metadata is None:
            raise TransportError(f"no metadata recorded for {chat_id}")
        return metadata

    async def download_media(self, message_raw: dict) -> str:
        message_id = str((message_raw.get("key") or {}).get("id", ""))
        self.calls.append(("download_media", message_id))
        path = self._recording.media.get(message_id)
        if not path:
            raise TransportError(f"no media recorded for message {message_id}")
        return path

    async def logout(self) -> None:
        self.connected = False
        self.calls.append(("logout",))
