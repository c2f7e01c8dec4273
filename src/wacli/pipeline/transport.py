"""Outbound contract with the messaging transport.

The transport owns authentication, encryption and the wire protocol. The
core only sees typed events coming in (via the ``emit`` callback handed to
connect()) and the async actions below going out.

// [LAW:locality-or-seam] Transport is the only seam between the core and the wire.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from wacli.core.models import GroupMetadata

# emit(event_name, payload): raw payloads, parsed by event_types.parse_transport_event
EmitFn = Callable[[str, object], None]


class TransportError(Exception):
    """Recoverable transport failure (disconnect, send failure...)."""


class PermissionDeniedError(TransportError):
    """The account may not read this resource (e.g. metadata of a group it left)."""


class Transport(Protocol):
    async def connect(self, emit: EmitFn) -> None: ...

    async def close(self) -> None: ...

    async def send_text(self, chat_id: str, text: str, quoted_raw: dict | None = None) -> None: ...

    async def send_media(self, chat_id: str, file_path: str, kind: str) -> None: ...

    async def send_reaction(self, chat_id: str, message_raw: dict, emoji: str) -> None: ...

    async def mark_read(self, chat_id: str) -> None: ...

    async def fetch_group_metadata(self, chat_id: str) -> GroupMetadata: ...

    async def download_media(self, message_raw: dict) -> str: ...

    async def logout(self) -> None: ...


@dataclass(frozen=True)
class ClientHandle:
    """One live connection attempt.

    Created on every connect and discarded on reconnect or logout. Events
    arriving through a handle whose generation is no longer current are
    dropped by the reconciler.
    """

    transport: Transport
    generation: int
