"""Type-safe transport event system.

// [LAW:one-source-of-truth] kind is set by subclass, not caller.
// [LAW:single-enforcer] parse_transport_event is the sole payload validation boundary.

Raw transport payloads are duck-typed dicts; everything past this module
sees closed, frozen event variants carrying only their relevant fields.

This module is STABLE: safe for `from` imports everywhere.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from wacli.core.models import ChatPatch, Contact, GroupMetadata, coerce_int
import wacli.core.identity


# ─── Type alias for JSON-parsed dicts ─────────────────────────────────────────

JsonDict = dict[str, object]

# Close reason status code the transport uses for an explicit logout.
LOGGED_OUT_STATUS = 401


# ─── Enums ────────────────────────────────────────────────────────────────────


class TransportEventKind(Enum):
    """Discriminator for transport events."""

    CONNECTION_UPDATE = "connection_update"
    QR_CHALLENGE = "qr_challenge"
    HISTORY_SET = "history_set"
    CHATS_SET = "chats_set"
    CHATS_UPSERT = "chats_upsert"
    CHATS_UPDATE = "chats_update"
    CONTACTS_SET = "contacts_set"
    CONTACTS_UPSERT = "contacts_upsert"
    CONTACTS_UPDATE = "contacts_update"
    PRESENCE_UPDATE = "presence_update"
    MESSAGES_UPSERT = "messages_upsert"


class ConnectionPhase(Enum):
    """Connection state as reported by the transport."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


# ─── Value types ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ChatUpdate:
    """One chat entry of a bulk chat event."""

    id: str
    patch: ChatPatch


# ─── Transport Event Hierarchy ────────────────────────────────────────────────


@dataclass(frozen=True)
class TransportEvent:
    """Base class for all transport events."""

    kind: TransportEventKind = field(init=False)


@dataclass(frozen=True)
class ConnectionUpdateEvent(TransportEvent):
    phase: ConnectionPhase
    status_code: int | None = None
    kind: TransportEventKind = field(default=TransportEventKind.CONNECTION_UPDATE, init=False)

    @property
    def logged_out(self) -> bool:
        return self.phase is ConnectionPhase.CLOSE and self.status_code == LOGGED_OUT_STATUS


@dataclass(frozen=True)
class QrChallengeEvent(TransportEvent):
    """A fresh QR challenge; replaces any previous one."""

    qr: str
    kind: TransportEventKind = field(default=TransportEventKind.QR_CHALLENGE, init=False)


@dataclass(frozen=True)
class HistorySetEvent(TransportEvent):
    """One batch of the initial history sync."""

    chats: tuple[ChatUpdate, ...] = ()
    contacts: tuple[Contact, ...] = ()
    messages: tuple[JsonDict, ...] = ()
    is_latest: bool = False
    progress: int | None = None
    kind: TransportEventKind = field(default=TransportEventKind.HISTORY_SET, init=False)


@dataclass(frozen=True)
class ChatsSetEvent(TransportEvent):
    chats: tuple[ChatUpdate, ...] = ()
    kind: TransportEventKind = field(default=TransportEventKind.CHATS_SET, init=False)


@dataclass(frozen=True)
class ChatsUpsertEvent(TransportEvent):
    chats: tuple[ChatUpdate, ...] = ()
    kind: TransportEventKind = field(default=TransportEventKind.CHATS_UPSERT, init=False)


@dataclass(frozen=True)
class ChatsUpdateEvent(TransportEvent):
    chats: tuple[ChatUpdate, ...] = ()
    kind: TransportEventKind = field(default=TransportEventKind.CHATS_UPDATE, init=False)


@dataclass(frozen=True)
class ContactsSetEvent(TransportEvent):
    contacts: tuple[Contact, ...] = ()
    kind: TransportEventKind = field(default=TransportEventKind.CONTACTS_SET, init=False)


@dataclass(frozen=True)
class ContactsUpsertEvent(TransportEvent):
    contacts: tuple[Contact, ...] = ()
    kind: TransportEventKind = field(default=TransportEventKind.CONTACTS_UPSERT, init=False)


@dataclass(frozen=True)
class ContactsUpdateEvent(TransportEvent):
    contacts: tuple[Contact, ...] = ()
    kind: TransportEventKind = field(default=TransportEventKind.CONTACTS_UPDATE, init=False)


@dataclass(frozen=True)
class PresenceUpdateEvent(TransportEvent):
    chat_id: str
    presence: str | None = None
    kind: TransportEventKind = field(default=TransportEventKind.PRESENCE_UPDATE, init=False)


@dataclass(frozen=True)
class MessagesUpsertEvent(TransportEvent):
    """New messages. ``upsert_type`` is "notify" for live arrivals, "append" for catch-up."""

    messages: tuple[JsonDict, ...] = ()
    upsert_type: str = "notify"
    kind: TransportEventKind = field(default=TransportEventKind.MESSAGES_UPSERT, init=False)

    @property
    def is_notification(self) -> bool:
        return self.upsert_type == "notify"


# ─── Parse boundary ──────────────────────────────────────────────────────────
# // [LAW:single-enforcer] Single parse boundary for transport payloads.


def _dict(v: object) -> JsonDict:
    return v if isinstance(v, dict) else {}


def _list(v: object) -> list:
    return v if isinstance(v, list) else []


def _opt_str(v: object) -> str | None:
    return v if isinstance(v, str) and v else None


def _parse_chat(raw: object) -> ChatUpdate | None:
    raw = _dict(raw)
    chat_id = _opt_str(raw.get("id"))
    if chat_id is None:
        return None
    timestamp = coerce_int(raw.get("conversationTimestamp") or raw.get("timestamp"))
    unread = raw.get("unreadCount")
    return ChatUpdate(
        id=wacli.core.identity.normalize(chat_id),
        patch=ChatPatch(
            name=_opt_str(raw.get("name")) or _opt_str(raw.get("subject")),
            last_message=_opt_str(raw.get("lastMessage")),
            unread_count=coerce_int(unread) if unread is not None else None,
            group_metadata=GroupMetadata.from_dict(raw.get("groupMetadata")),
            timestamp=timestamp or None,
            is_group=True if raw.get("isGroup") is True else None,
        ),
    )


def _parse_chats(items: object) -> tuple[ChatUpdate, ...]:
    return tuple(c for c in (_parse_chat(raw) for raw in _list(items)) if c is not None)


def _parse_contacts(items: object) -> tuple[Contact, ...]:
    contacts = []
    for raw in _list(items):
        raw = _dict(raw)
        contact = Contact.from_dict(raw)
        if contact is None:
            continue
        if contact.notify is None:
            # Business accounts self-report through verifiedName.
            contact.notify = _opt_str(raw.get("verifiedName"))
        contacts.append(contact)
    return tuple(contacts)


def _parse_connection_update(raw: JsonDict) -> TransportEvent:
    qr = _opt_str(raw.get("qr"))
    if qr is not None:
        return QrChallengeEvent(qr=qr)
    try:
        phase = ConnectionPhase(str(raw.get("connection", "")))
    except ValueError:
        phase = ConnectionPhase.CONNECTING
    error = _dict(_dict(raw.get("lastDisconnect")).get("error"))
    status = _dict(error.get("output")).get("statusCode", raw.get("statusCode"))
    return ConnectionUpdateEvent(
        phase=phase,
        status_code=coerce_int(status) if status is not None else None,
    )


def _parse_qr(raw: JsonDict) -> QrChallengeEvent:
    return QrChallengeEvent(qr=str(raw.get("qr") or ""))


def _parse_history_set(raw: JsonDict) -> HistorySetEvent:
    progress = raw.get("progress")
    return HistorySetEvent(
        chats=_parse_chats(raw.get("chats")),
        contacts=_parse_contacts(raw.get("contacts")),
        messages=tuple(_dict(m) for m in _list(raw.get("messages")) if isinstance(m, dict)),
        is_latest=bool(raw.get("isLatest")),
        progress=coerce_int(progress) if progress is not None else None,
    )


def _parse_presence_update(raw: JsonDict) -> PresenceUpdateEvent:
    presences = _dict(raw.get("presences"))
    first = _dict(next(iter(presences.values()), None))
    return PresenceUpdateEvent(
        chat_id=wacli.core.identity.normalize(str(raw.get("id") or "")),
        presence=_opt_str(first.get("lastKnownPresence")),
    )


def _parse_messages_upsert(raw: JsonDict) -> MessagesUpsertEvent:
    return MessagesUpsertEvent(
        messages=tuple(_dict(m) for m in _list(raw.get("messages")) if isinstance(m, dict)),
        upsert_type=str(raw.get("type") or "notify"),
    )


def _items(raw: JsonDict) -> object:
    # List-shaped events arrive either bare or wrapped as {"items": [...]}.
    return raw.get("items", raw)


# [LAW:dataflow-not-control-flow] Dispatch table for payload parsing
_PARSERS: dict[str, Callable[[JsonDict], TransportEvent]] = {
    "connection.update": _parse_connection_update,
    "qr": _parse_qr,
    "messaging-history.set": _parse_history_set,
    "chats.set": lambda raw: ChatsSetEvent(chats=_parse_chats(raw.get("chats", _items(raw)))),
    "chats.upsert": lambda raw: ChatsUpsertEvent(chats=_parse_chats(_items(raw))),
    "chats.update": lambda raw: ChatsUpdateEvent(chats=_parse_chats(_items(raw))),
    "contacts.set": lambda raw: ContactsSetEvent(contacts=_parse_contacts(raw.get("contacts", _items(raw)))),
    "contacts.upsert": lambda raw: ContactsUpsertEvent(contacts=_parse_contacts(_items(raw))),
    "contacts.update": lambda raw: ContactsUpdateEvent(contacts=_parse_contacts(_items(raw))),
    "presence.update": _parse_presence_update,
    "messages.upsert": _parse_messages_upsert,
}


def parse_transport_event(name: str, raw: object) -> TransportEvent:
    """Parse a raw transport payload into a typed TransportEvent.

    Called at the two production boundaries: live transports and replay.

    Args:
        name: Transport event name (e.g., "messages.upsert")
        raw: The payload. Lists are accepted for the list-shaped events.

    Returns:
        Typed TransportEvent subclass

    Raises:
        ValueError: If name is unknown
    """
    parser = _PARSERS.get(name)
    if parser is None:
        raise ValueError(f"Unknown transport event: {name!r}")
    payload: JsonDict = {"items": raw} if isinstance(raw, list) else _dict(raw)
    return parser(payload)
