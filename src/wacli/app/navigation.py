"""Navigation state machine: focus, cursors, search filter and overlays.

// [LAW:one-source-of-truth] Cursor state lives in NavigationState only.
// [LAW:one-way-deps] Reads store projections; never mutates the store.

The state holds identifiers, not store objects. Every read goes back to the
store by key, and a missing chat or message simply makes the cursor inert.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from wacli.app.state_store import StateStore
from wacli.core.models import Chat, Message, Participant

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 15


class Pane(Enum):
    INPUT = "input"
    CHATS = "chats"
    MESSAGES = "messages"
    MEMBERS = "members"


class EscapeAction(Enum):
    """What a single escape press did, in priority order."""

    CLEAR_REPLY = "clear_reply"
    CLEAR_SEARCH = "clear_search"
    CLOSE_MEMBERS = "close_members"
    EXIT = "exit"


@dataclass
class NavigationState:
    focused_pane: Pane = Pane.INPUT
    selected_chat_id: str | None = None
    selected_message_index: int = -1  # -1 = none
    chat_scroll_offset: int = 0
    search_query: str = ""
    reply_target: Message | None = None
    members_visible: bool = False
    member_index: int = 0


class NavigationMachine:
    """Applies discrete input events to NavigationState."""

    def __init__(self, store: StateStore, page_size: int = DEFAULT_PAGE_SIZE):
        self._store = store
        self.page_size = max(1, int(page_size))
        self.state = NavigationState()

        # Fired exactly once per selection change (mark read, metadata fetch).
        self.on_chat_selected: Callable[[str | None], None] | None = None

    # ─── Projections ──────────────────────────────────────────────────

    def visible_chats(self) -> list[Chat]:
        return self._store.filtered_chats(self.state.search_query)

    def page(self) -> list[Chat]:
        offset = self.state.chat_scroll_offset
        return self.visible_chats()[offset:offset + self.page_size]

    def selected_chat(self) -> Chat | None:
        return self._store.get_chat(self.state.selected_chat_id)

    def messages(self) -> list[Message]:
        return self._store.messages_for(self.state.selected_chat_id)

    def selected_message(self) -> Message | None:
        index = self.state.selected_message_index
        messages = self.messages()
        if 0 <= index < len(messages):
            return messages[index]
        return None

    def members(self) -> tuple[Participant, ...]:
        chat = self.selected_chat()
        if chat is None or chat.group_metadata is None:
            return ()
        return chat.group_metadata.participants

    # ─── Focus ────────────────────────────────────────────────────────

    def _pane_cycle(self) -> list[Pane]:
        panes = [Pane.INPUT, Pane.CHATS, Pane.MESSAGES]
        if self.state.members_visible:
            panes.append(Pane.MEMBERS)
        return panes

    def cycle_focus(self, direction: int = 1) -> Pane:
        panes = self._pane_cycle()
        current = self.state.focused_pane
        index = panes.index(current) if current in panes else 0
        self.state.focused_pane = panes[(index + direction) % len(panes)]
        return self.state.focused_pane

    def focus(self, pane: Pane) -> None:
        if pane is Pane.MEMBERS and not self.state.members_visible:
            return
        self.state.focused_pane = pane

    # ─── Chat selection ───────────────────────────────────────────────

    def _scroll_to(self, index: int) -> None:
        offset = self.state.chat_scroll_offset
        if index < offset:
            offset = index
        elif index >= offset + self.page_size:
            offset = index - self.page_size + 1
        self.state.chat_scroll_offset = max(0, offset)

    def move_chat_selection(self, delta: int) -> bool:
        """Move within the filtered projection. Out-of-range moves are no-ops."""
        ids = [chat.id for chat in self.visible_chats()]
        if not ids:
            return False
        current = self.state.selected_chat_id
        index = ids.index(current) if current in ids else -1
        target = index + delta
        if target < 0 or target >= len(ids):
            return False
        self.select_chat(ids[target])
        self._scroll_to(target)
        return True

    def select_chat(self, chat_id: str | None) -> bool:
        """Switch the selected chat. Returns False when it did not change."""
        if chat_id == self.state.selected_chat_id:
            return False
        self.state.selected_chat_id = chat_id
        self.state.selected_message_index = -1
        self.state.reply_target = None
        self._close_members()
        logger.debug("Selected chat %s", chat_id)
        if self.on_chat_selected is not None:
            self.on_chat_selected(chat_id)
        return True

    # ─── Message selection ────────────────────────────────────────────

    def move_message_selection(self, delta: int) -> bool:
        count = len(self.messages())
        if count == 0:
            return False
        index = self.state.selected_message_index
        if index < 0:
            self.state.selected_message_index = count - 1
        else:
            self.state.selected_message_index = max(0, min(count - 1, index + delta))
        return self.state.selected_message_index != index

    def begin_reply(self) -> bool:
        """Snapshot the selected message as reply target and focus input."""
        message = self.selected_message()
        if message is None:
            return False
        self.state.reply_target = message
        self.state.focused_pane = Pane.INPUT
        return True

    def clear_reply(self) -> None:
        self.state.reply_target = None

    # ─── Members overlay ──────────────────────────────────────────────

    def _close_members(self) -> None:
        if not self.state.members_visible:
            return
        self.state.members_visible = False
        self.state.member_index = 0
        if self.state.focused_pane is Pane.MEMBERS:
            self.state.focused_pane = Pane.MESSAGES

    def toggle_members(self) -> bool:
        """Toggle the overlay; only groups with cached metadata may open it."""
        if self.state.members_visible:
            self._close_members()
            return True
        chat = self.selected_chat()
        if chat is None or not chat.is_group or chat.group_metadata is None:
            return False
        self.state.members_visible = True
        self.state.member_index = 0
        self.state.focused_pane = Pane.MEMBERS
        return True

    def move_member_selection(self, delta: int) -> bool:
        count = len(self.members())
        if count == 0:
            return False
        index = self.state.member_index
        self.state.member_index = max(0, min(count - 1, index + delta))
        return self.state.member_index != index

    # ─── Search / escape ──────────────────────────────────────────────

    def set_search(self, query: str) -> None:
        self.state.search_query = query or ""
        ids = [chat.id for chat in self.visible_chats()]
        self.state.chat_scroll_offset = 0
        if self.state.selected_chat_id in ids:
            self._scroll_to(ids.index(self.state.selected_chat_id))

    def escape(self) -> EscapeAction:
        """Perform exactly one escape behavior, highest priority first."""
        if self.state.reply_target is not None:
            self.state.reply_target = None
            return EscapeAction.CLEAR_REPLY
        if self.state.search_query:
            self.set_search("")
            return EscapeAction.CLEAR_SEARCH
        if self.state.members_visible:
            self._close_members()
            return EscapeAction.CLOSE_MEMBERS
        return EscapeAction.EXIT

    # ─── Store change reconciliation ──────────────────────────────────

    def reconcile(self) -> None:
        """Clamp cursors after the store changed shape."""
        state = self.state
        chat = self.selected_chat()
        count = len(self.messages()) if chat is not None else 0
        if count == 0:
            state.selected_message_index = -1
        elif state.selected_message_index >= count:
            state.selected_message_index = count - 1

        if state.members_visible and (chat is None or chat.group_metadata is None):
            self._close_members()
        members = len(self.members())
        if state.member_index >= members:
            state.member_index = max(0, members - 1)

        visible = len(self.visible_chats())
        if state.chat_scroll_offset > max(0, visible - 1):
            state.chat_scroll_offset = max(0, visible - self.page_size)
