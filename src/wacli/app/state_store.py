"""State store: the authoritative in-memory view of chats, contacts, messages
and manual name overrides.

// [LAW:one-source-of-truth] Chat/Contact/Message/Override collections live here only.
// [LAW:single-enforcer] Identifiers are normalized at every public entry point.
// [LAW:one-way-deps] No widget imports. No transport imports.

Merge operations never raise: invalid or missing optional fields are "no
information", not errors. Callbacks fire after mutation.
"""

import dataclasses
import logging
import time
from collections import deque
from collections.abc import Callable, Iterable, Mapping

import wacli.core.display_names
import wacli.core.formatting
import wacli.core.identity
from wacli.core.models import Chat, ChatPatch, Contact, GroupMetadata, Message

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_WINDOW = 50


class StateStore:
    """Chats (ordered), contacts, per-chat message windows and overrides.

    Ordering: a merge carrying a non-empty ``last_message`` moves the chat to
    the front; any other merge that changes ``timestamp`` relocates only that
    chat by timestamp descending, leaving unaffected chats in place.
    """

    def __init__(
        self,
        message_window: int = DEFAULT_MESSAGE_WINDOW,
        clock: Callable[[], float] = time.time,
    ):
        self._message_window = max(1, int(message_window))
        self._clock = clock
        self._chats: dict[str, Chat] = {}
        self._order: list[str] = []  # chat ids, front = most recent
        self._contacts: dict[str, Contact] = {}
        self._messages: dict[str, deque[Message]] = {}
        self._overrides: dict[str, str] = {}

        # Callbacks: the app registers these for refresh scheduling
        self.on_change: Callable[[], None] | None = None
        self.on_overrides_changed: Callable[[], None] | None = None

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def _overrides_changed(self) -> None:
        if self.on_overrides_changed is not None:
            self.on_overrides_changed()
        self._changed()

    # ─── Chats ────────────────────────────────────────────────────────

    def _insert_by_timestamp(self, chat_id: str, timestamp: int) -> None:
        for index, other_id in enumerate(self._order):
            if self._chats[other_id].timestamp < timestamp:
                self._order.insert(index, chat_id)
                return
        self._order.append(chat_id)

    def _move_to_front(self, chat_id: str) -> None:
        if self._order and self._order[0] == chat_id:
            return
        self._order.remove(chat_id)
        self._order.insert(0, chat_id)

    def _accepts_name(self, chat: Chat, patch: ChatPatch, is_new: bool) -> bool:
        name = patch.name
        if not name or wacli.core.display_names.looks_like_member_list(name):
            return False
        # Bulk chat payloads mislabel groups; only trust names that come with group context.
        if chat.is_group and not is_new:
            return patch.group_metadata is not None or bool(patch.is_group)
        return True

    def upsert_chat(self, chat_id: str, patch: ChatPatch | None = None) -> Chat | None:
        """Create or shallow-merge a chat. Returns the stored chat."""
        if not isinstance(chat_id, str) or not chat_id:
            return None
        patch = patch or ChatPatch()
        canonical = wacli.core.identity.normalize(chat_id)
        chat = self._chats.get(canonical)
        is_new = chat is None
        if chat is None:
            chat = Chat(
                id=canonical,
                is_group=wacli.core.identity.is_group_id(canonical),
                timestamp=int(self._clock()),
            )
        previous_timestamp = chat.timestamp

        if self._accepts_name(chat, patch, is_new):
            chat.name = patch.name
        if patch.last_message:
            chat.last_message = patch.last_message
        if isinstance(patch.unread_count, int) and patch.unread_count >= 0:
            chat.unread_count = patch.unread_count
        if patch.presence:
            chat.presence = patch.presence
        if patch.group_metadata is not None:
            chat.group_metadata = patch.group_metadata
        if isinstance(patch.timestamp, int) and patch.timestamp > 0:
            chat.timestamp = patch.timestamp

        if is_new:
            self._chats[canonical] = chat
            if patch.last_message:
                self._order.insert(0, canonical)
            else:
                self._insert_by_timestamp(canonical, chat.timestamp)
        elif patch.last_message:
            self._move_to_front(canonical)
        elif chat.timestamp != previous_timestamp:
            self._order.remove(canonical)
            self._insert_by_timestamp(canonical, chat.timestamp)

        self._changed()
        return chat

    def set_presence(self, chat_id: str, presence: str | None) -> bool:
        """Update presence of a known chat. Unknown chats are ignored."""
        chat = self._chats.get(wacli.core.identity.normalize(chat_id))
        if chat is None or not presence:
            return False
        chat.presence = presence
        self._changed()
        return True

    def mark_read(self, chat_id: str) -> bool:
        chat = self._chats.get(wacli.core.identity.normalize(chat_id))
        if chat is None:
            return False
        if chat.unread_count:
            chat.unread_count = 0
            self._changed()
        return True

    def increment_unread(self, chat_id: str, count: int = 1) -> None:
        chat = self._chats.get(wacli.core.identity.normalize(chat_id))
        if chat is None:
            return
        chat.unread_count += max(0, count)
        self._changed()

    def cache_group_metadata(self, chat_id: str, metadata: GroupMetadata) -> Chat | None:
        """Attach fetched metadata and adopt its subject as the chat name."""
        canonical = wacli.core.identity.normalize(chat_id)
        if canonical not in self._chats:
            return None
        return self.upsert_chat(
            canonical,
            ChatPatch(name=metadata.subject or None, group_metadata=metadata, is_group=True),
        )

    # ─── Contacts ─────────────────────────────────────────────────────

    def _merge_contact(self, key: str, incoming: Contact) -> None:
        existing = self._contacts.get(key)
        if existing is None:
            self._contacts[key] = dataclasses.replace(incoming, id=key)
            return
        if incoming.name:
            existing.name = incoming.name
        if incoming.notify:
            existing.notify = incoming.notify

    def upsert_contacts(self, contacts: Iterable[Contact]) -> None:
        """Merge contacts under both their canonical and their original id."""
        changed = False
        for contact in contacts:
            if not isinstance(contact, Contact) or not contact.id:
                continue
            canonical = wacli.core.identity.normalize(contact.id)
            for key in dict.fromkeys((canonical, contact.id)):
                self._merge_contact(key, contact)
            changed = True
        if changed:
            self._changed()

    # ─── Messages ─────────────────────────────────────────────────────

    def append_message(self, chat_id: str, message: Message) -> list[Message]:
        """Append to the chat's window, evicting the oldest beyond the cap.

        A message whose id is already in the window replaces it in place.
        Creates a minimal chat if none exists. Returns the updated window.
        """
        canonical = wacli.core.identity.normalize(chat_id)
        if canonical not in self._chats:
            self.upsert_chat(canonical)
        window = self._messages.get(canonical)
        if window is None:
            window = deque(maxlen=self._message_window)
            self._messages[canonical] = window
        for index, existing in enumerate(window):
            if existing.id == message.id:
                window[index] = message
                break
        else:
            window.append(message)
        self._changed()
        return list(window)

    # ─── Overrides ────────────────────────────────────────────────────

    def set_override(self, jid: str, name: str) -> None:
        alias = (name or "").strip()
        if not alias:
            self.clear_override(jid)
            return
        self._overrides[wacli.core.identity.normalize(jid)] = alias
        self._overrides_changed()

    def clear_override(self, jid: str) -> bool:
        removed = self._overrides.pop(wacli.core.identity.normalize(jid), None)
        if removed is None:
            return False
        self._overrides_changed()
        return True

    # ─── Projections ──────────────────────────────────────────────────

    @property
    def contacts(self) -> Mapping[str, Contact]:
        return self._contacts

    @property
    def overrides(self) -> Mapping[str, str]:
        return self._overrides

    def get_chat(self, chat_id: str | None) -> Chat | None:
        if not chat_id:
            return None
        return self._chats.get(wacli.core.identity.normalize(chat_id))

    def ordered_chats(self) -> list[Chat]:
        return [self._chats[chat_id] for chat_id in self._order]

    def display_name(self, jid: str) -> str:
        chat = self.get_chat(jid)
        return wacli.core.display_names.resolve_name(
            jid,
            self._contacts,
            self._overrides,
            chat_name=chat.name if chat else None,
            group_subject=chat.group_metadata.subject if chat and chat.group_metadata else None,
        )

    def filtered_chats(self, query: str = "") -> list[Chat]:
        """Ordered chats whose display name contains ``query`` (case-insensitive)."""
        needle = (query or "").casefold()
        chats = self.ordered_chats()
        if not needle:
            return chats
        return [chat for chat in chats if needle in self.display_name(chat.id).casefold()]

    def messages_for(self, chat_id: str | None) -> list[Message]:
        if not chat_id:
            return []
        return list(self._messages.get(wacli.core.identity.normalize(chat_id), ()))

    def last_media_message(self, chat_id: str | None) -> Message | None:
        for message in reversed(self.messages_for(chat_id)):
            if wacli.core.formatting.is_media_placeholder(message.text):
                return message
        return None

    # ─── Persistence ──────────────────────────────────────────────────

    def snapshot(self) -> dict:
        """Plain-dict export of chats, contacts and message windows."""
        return {
            "chats": [self._chats[chat_id].to_dict() for chat_id in self._order],
            "contacts": {key: contact.to_dict() for key, contact in self._contacts.items()},
            "messages": {
                chat_id: [message.to_dict() for message in window]
                for chat_id, window in self._messages.items()
            },
        }

    def restore(self, blob: object) -> None:
        """Replace chats, contacts and messages from a snapshot.

        Malformed input yields empty state. Overrides are untouched.
        """
        self._chats = {}
        self._order = []
        self._contacts = {}
        self._messages = {}
        if not isinstance(blob, dict):
            if blob is not None:
                logger.warning("Ignoring malformed state snapshot of type %s", type(blob).__name__)
            self._changed()
            return

        raw_chats = blob.get("chats")
        if isinstance(raw_chats, dict):
            raw_chats = list(raw_chats.values())
        for raw in raw_chats if isinstance(raw_chats, list) else []:
            chat = Chat.from_dict(raw)
            if chat is None or chat.id in self._chats:
                continue
            self._chats[chat.id] = chat
            self._order.append(chat.id)

        raw_contacts = blob.get("contacts")
        if isinstance(raw_contacts, dict):
            for key, raw in raw_contacts.items():
                contact = Contact.from_dict(raw)
                if contact is not None and isinstance(key, str):
                    self._merge_contact(key, contact)

        raw_messages = blob.get("messages")
        if isinstance(raw_messages, dict):
            for chat_id, raw_list in raw_messages.items():
                if not isinstance(chat_id, str) or not isinstance(raw_list, list):
                    continue
                canonical = wacli.core.identity.normalize(chat_id)
                messages = [m for m in (Message.from_dict(raw) for raw in raw_list) if m is not None]
                if not messages:
                    continue
                if canonical not in self._chats:
                    self._chats[canonical] = Chat(
                        id=canonical,
                        is_group=wacli.core.identity.is_group_id(canonical),
                        timestamp=messages[-1].timestamp,
                    )
                    self._insert_by_timestamp(canonical, messages[-1].timestamp)
                window = self._messages.setdefault(canonical, deque(maxlen=self._message_window))
                window.extend(messages)

        logger.info(
            "Restored %d chats, %d contacts, %d message windows",
            len(self._chats), len(self._contacts), len(self._messages),
        )
        self._changed()

    def snapshot_overrides(self) -> dict[str, str]:
        return dict(self._overrides)

    def restore_overrides(self, blob: object) -> None:
        self._overrides = {}
        if isinstance(blob, dict):
            for jid, alias in blob.items():
                if isinstance(jid, str) and isinstance(alias, str) and alias.strip():
                    self._overrides[wacli.core.identity.normalize(jid)] = alias.strip()
        self._changed()
