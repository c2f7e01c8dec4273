"""Domain records held by the state store.

Records serialize to the camelCase document layout used on disk
(``lastMessage``, ``unreadCount``, ``isGroup``...). from_dict() is tolerant:
missing or mistyped optional fields are treated as "no information".

This module is STABLE: safe for `from` imports everywhere.
"""

from dataclasses import dataclass, field

import wacli.core.identity


def _opt_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def coerce_int(value: object, default: int = 0) -> int:
    # Transport timestamps arrive as int, numeric str, or {"low": n} longs.
    if isinstance(value, dict):
        value = value.get("low", default)
    if isinstance(value, bool):
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


# ─── Contacts ─────────────────────────────────────────────────────────────────


@dataclass
class Contact:
    """Address-book ``name`` vs the peer's self-reported ``notify``."""

    id: str
    name: str | None = None
    notify: str | None = None

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "notify": self.notify}

    @classmethod
    def from_dict(cls, raw: dict) -> "Contact | None":
        if not isinstance(raw, dict) or not isinstance(raw.get("id"), str):
            return None
        return cls(
            id=raw["id"],
            name=_opt_str(raw.get("name")),
            notify=_opt_str(raw.get("notify")),
        )


# ─── Groups ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Participant:
    id: str
    admin: bool | None = None


@dataclass(frozen=True)
class GroupMetadata:
    """Group subject and member list, cached on the chat after one fetch."""

    subject: str
    participants: tuple[Participant, ...] = ()

    def to_dict(self) -> dict:
        return {
            "subject": self.subject,
            "participants": [{"id": p.id, "admin": p.admin} for p in self.participants],
        }

    @classmethod
    def from_dict(cls, raw: object) -> "GroupMetadata | None":
        if not isinstance(raw, dict):
            return None
        participants = []
        for entry in raw.get("participants") or []:
            if not isinstance(entry, dict) or not isinstance(entry.get("id"), str):
                continue
            admin = entry.get("admin")
            # Transport reports "admin"/"superadmin" strings; the record keeps a flag.
            participants.append(
                Participant(
                    id=wacli.core.identity.normalize(entry["id"]),
                    admin=bool(admin) if admin is not None else None,
                )
            )
        return cls(subject=str(raw.get("subject") or ""), participants=tuple(participants))


# ─── Chats ────────────────────────────────────────────────────────────────────


@dataclass
class Chat:
    """One conversation. ``is_group`` is derived from the id, never from updates."""

    id: str
    name: str | None = None
    last_message: str | None = None
    unread_count: int = 0
    is_group: bool = False
    presence: str | None = None
    group_metadata: GroupMetadata | None = None
    timestamp: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "lastMessage": self.last_message,
            "unreadCount": self.unread_count,
            "isGroup": self.is_group,
            "presence": self.presence,
            "groupMetadata": self.group_metadata.to_dict() if self.group_metadata else None,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Chat | None":
        if not isinstance(raw, dict) or not isinstance(raw.get("id"), str):
            return None
        chat_id = wacli.core.identity.normalize(raw["id"])
        return cls(
            id=chat_id,
            name=_opt_str(raw.get("name")),
            last_message=_opt_str(raw.get("lastMessage")),
            unread_count=max(0, coerce_int(raw.get("unreadCount"))),
            is_group=wacli.core.identity.is_group_id(chat_id),
            presence=_opt_str(raw.get("presence")),
            group_metadata=GroupMetadata.from_dict(raw.get("groupMetadata")),
            timestamp=coerce_int(raw.get("timestamp")),
        )


@dataclass(frozen=True)
class ChatPatch:
    """Partial chat update. ``None`` means "no information" for that field.

    ``is_group`` is only an explicit "this is a group" marker that unlocks
    name updates on group chats; it never changes the chat's kind.
    """

    name: str | None = None
    last_message: str | None = None
    unread_count: int | None = None
    presence: str | None = None
    group_metadata: GroupMetadata | None = None
    timestamp: int | None = None
    is_group: bool | None = None


# ─── Messages ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ReplyTo:
    text: str
    participant: str | None = None


@dataclass(frozen=True)
class Message:
    """One entry of a chat's message window.

    ``sender`` is the author (the group participant in groups, the chat id
    otherwise) and serializes as ``from``. ``raw`` is the transport payload,
    kept opaque for quoting, reacting and media download.
    """

    id: str
    sender: str
    text: str
    timestamp: int = 0
    is_me: bool = False
    raw: dict = field(default_factory=dict, compare=False, repr=False)
    reply_to: ReplyTo | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from": self.sender,
            "text": self.text,
            "timestamp": self.timestamp,
            "isMe": self.is_me,
            "raw": self.raw,
            "replyTo": (
                {"text": self.reply_to.text, "participant": self.reply_to.participant}
                if self.reply_to
                else None
            ),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Message | None":
        if not isinstance(raw, dict) or not isinstance(raw.get("id"), str):
            return None
        reply_raw = raw.get("replyTo")
        reply_to = None
        if isinstance(reply_raw, dict) and isinstance(reply_raw.get("text"), str):
            reply_to = ReplyTo(text=reply_raw["text"], participant=_opt_str(reply_raw.get("participant")))
        sender = raw.get("from")
        return cls(
            id=raw["id"],
            sender=wacli.core.identity.normalize(sender) if isinstance(sender, str) else "",
            text=str(raw.get("text") or ""),
            timestamp=coerce_int(raw.get("timestamp")),
            is_me=bool(raw.get("isMe")),
            raw=raw.get("raw") if isinstance(raw.get("raw"), dict) else {},
            reply_to=reply_to,
        )
