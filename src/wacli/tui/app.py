"""Main TUI application.

// [LAW:single-enforcer] on_key is the sole dispatcher for pane keys.
// [LAW:one-way-deps] Widgets only receive rendered Text; state lives in the store
//   and the navigation machine.

Store and reconciler changes request a refresh; refreshes are coalesced to
one per message-loop turn.
"""

import logging
from collections.abc import Callable

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Input

import wacli.tui.input_modes
import wacli.tui.rendering
from wacli.app.commands import CommandProcessor
from wacli.app.config import AppConfig
from wacli.app.navigation import EscapeAction, NavigationMachine, Pane
from wacli.app.persistence import PersistenceScheduler
from wacli.app.state_store import StateStore
from wacli.pipeline.reconciler import ConnectionState, EventReconciler
from wacli.pipeline.transport import Transport
from wacli.tui.widgets import ChatListPanel, MembersPanel, MessagePanel, QrPanel, StatusBar

logger = logging.getLogger(__name__)

_SEARCH_PREFIX = "/search "


class WacliApp(App):
    """Terminal client: chat list, message window, members overlay, input box."""

    TITLE = "wacli"

    # Priority so the focused Input never swallows them.
    BINDINGS = [
        Binding("tab", "cycle_focus(1)", "Next pane", priority=True, show=False),
        Binding("shift+tab", "cycle_focus(-1)", "Previous pane", priority=True, show=False),
        Binding("escape", "escape", "Back", priority=True, show=False),
        Binding("ctrl+c", "quit", "Quit", priority=True, show=False),
    ]

    def __init__(
        self,
        store: StateStore,
        reconciler: EventReconciler,
        navigation: NavigationMachine,
        persistence: PersistenceScheduler,
        config: AppConfig | None = None,
    ):
        super().__init__()
        self._store = store
        self._reconciler = reconciler
        self._nav = navigation
        self._persistence = persistence
        self._config = config
        self._commands = CommandProcessor(navigation, reconciler)
        self._refresh_pending = False
        self._torn_down = False
        self._view_ready = False

    # ─── Accessors (tests and harness) ────────────────────────────────

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def reconciler(self) -> EventReconciler:
        return self._reconciler

    @property
    def navigation(self) -> NavigationMachine:
        return self._nav

    @property
    def persistence(self) -> PersistenceScheduler:
        return self._persistence

    def _input(self) -> Input:
        return self.query_one("#input", Input)

    # ─── Lifecycle ────────────────────────────────────────────────────

    def compose(self) -> ComposeResult:
        with Vertical():
            yield QrPanel(id="qr")
            with Horizontal():
                yield ChatListPanel("Chats", id="chats")
                yield MessagePanel("Messages", id="messages")
                yield MembersPanel("Members", id="members")
            yield Input(placeholder="Type a message or /command", id="input")
        yield StatusBar(id="status")

    def on_mount(self) -> None:
        saved = self._config.get("theme") if self._config is not None else None
        if saved and saved in self.available_themes:
            self.theme = saved

        self._store.on_change = self._request_refresh
        self._reconciler.on_change = self._request_refresh
        self._reconciler.on_logged_out = self._on_logged_out
        self._nav.on_chat_selected = self._reconciler.select_chat

        self._persistence.start()
        self._reconciler.start()
        self._view_ready = True
        self._refresh_view()

    async def teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self._view_ready = False
        await self._reconciler.shutdown()
        await self._persistence.stop()

    async def on_unmount(self) -> None:
        await self.teardown()

    async def action_quit(self) -> None:
        await self.teardown()
        self.exit()

    def _on_logged_out(self) -> None:
        logger.info("Logged out; exiting")
        self.call_later(self._exit_after_logout)

    async def _exit_after_logout(self) -> None:
        await self._reconciler.wait_idle()
        await self.action_quit()

    # ─── Refresh ──────────────────────────────────────────────────────

    def _request_refresh(self) -> None:
        if self._refresh_pending:
            return
        self._refresh_pending = True
        self.call_later(self._refresh_view)

    def _refresh_view(self) -> None:
        self._refresh_pending = False
        if not self._view_ready:
            return
        nav = self._nav
        nav.reconcile()
        state = nav.state
        name_of = self._store.display_name
        focused = state.focused_pane

        chats = self.query_one("#chats", ChatListPanel)
        visible = nav.visible_chats()
        title = f"Chats ({len(visible)})"
        if state.search_query:
            title = f"Chats: {state.search_query!r} ({len(visible)})"
        chats.show(
            wacli.tui.rendering.render_chat_list(
                nav.page(), name_of, state.selected_chat_id, focused is Pane.CHATS
            ),
            focused is Pane.CHATS,
            title=title,
        )

        chat = nav.selected_chat()
        window = nav.messages()
        self.query_one("#messages", MessagePanel).show(
            wacli.tui.rendering.render_messages(
                window,
                name_of,
                state.selected_message_index,
                focused is Pane.MESSAGES,
                show_sender=bool(chat and chat.is_group),
            ),
            focused is Pane.MESSAGES,
            title=wacli.tui.rendering.render_chat_title(chat, name_of(chat.id) if chat else ""),
            selected_line=wacli.tui.rendering.message_line(window, state.selected_message_index),
        )

        members = self.query_one("#members", MembersPanel)
        members.set_class(state.members_visible, "-visible")
        if state.members_visible:
            members.show(
                wacli.tui.rendering.render_members(
                    nav.members(), name_of, state.member_index, focused is Pane.MEMBERS
                ),
                focused is Pane.MEMBERS,
            )

        qr = self.query_one("#qr", QrPanel)
        awaiting = self._reconciler.state is ConnectionState.AWAITING_QR and bool(self._reconciler.qr)
        qr.set_class(awaiting, "-visible")
        if awaiting:
            qr.show(wacli.tui.rendering.render_qr(self._reconciler.qr or ""))

        self.query_one("#status", StatusBar).show(
            wacli.tui.rendering.render_status(
                self._reconciler.state,
                self._reconciler.sync_progress,
                self._reconciler.last_error,
                state.reply_target,
                focused,
            )
        )
        self._sync_focus()

    def _sync_focus(self) -> None:
        """Textual focus follows the navigation pane: only INPUT owns the cursor."""
        box = self._input()
        if self._nav.state.focused_pane is Pane.INPUT:
            if self.focused is not box:
                box.focus()
        elif self.focused is not None:
            self.set_focus(None)

    # ─── Key dispatch ─────────────────────────────────────────────────

    async def on_key(self, event) -> None:
        keymap = wacli.tui.input_modes.PANE_KEYMAP.get(self._nav.state.focused_pane, {})
        action_name = keymap.get(event.key) or (keymap.get(event.character) if event.character else None)
        if action_name:
            event.prevent_default()
            event.stop()
            await self.run_action(action_name)

    def on_input_changed(self, event: Input.Changed) -> None:
        # Live filtering while typing a /search command.
        value = event.value
        if value.startswith(_SEARCH_PREFIX):
            self._nav.set_search(value[len(_SEARCH_PREFIX):])
            self._request_refresh()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if self._commands.submit(event.value):
            event.input.value = ""
        self._request_refresh()

    # ─── Actions ──────────────────────────────────────────────────────

    def action_cycle_focus(self, direction: int) -> None:
        self._nav.cycle_focus(direction)
        self._refresh_view()

    def action_focus_pane(self, pane: str) -> None:
        self._nav.focus(Pane(pane))
        self._refresh_view()

    async def action_escape(self) -> None:
        result = self._nav.escape()
        if result is EscapeAction.EXIT:
            await self.action_quit()
            return
        self._refresh_view()

    def action_chat_move(self, delta: int) -> None:
        if self._nav.move_chat_selection(delta):
            self._refresh_view()

    def action_message_move(self, delta: int) -> None:
        if self._nav.move_message_selection(delta):
            self._refresh_view()

    def action_member_move(self, delta: int) -> None:
        if self._nav.move_member_selection(delta):
            self._refresh_view()

    def action_reply(self) -> None:
        if self._nav.begin_reply():
            self._refresh_view()

    def action_react(self) -> None:
        chat = self._nav.selected_chat()
        message = self._nav.selected_message()
        if chat is not None and message is not None:
            self._reconciler.react(chat.id, message)

    def action_toggle_members(self) -> None:
        if self._nav.toggle_members():
            self._refresh_view()

    def action_open_media(self) -> None:
        self._reconciler.open_last_media(self._nav.state.selected_chat_id)

    def action_start_search(self) -> None:
        self._nav.focus(Pane.INPUT)
        self._refresh_view()
        box = self._input()
        box.value = _SEARCH_PREFIX + self._nav.state.search_query
        box.cursor_position = len(box.value)

    def action_cycle_theme(self, direction: int) -> None:
        names = sorted(self.available_themes.keys())
        index = names.index(self.theme) if self.theme in names else 0
        self.theme = names[(index + direction) % len(names)]
        if self._config is not None:
            self._config.set("theme", self.theme)
        self.notify(f"Theme: {self.theme}")


def create_app(
    config: AppConfig,
    transport_factory: Callable[[], Transport],
    media_opener: Callable[[str], None] | None = None,
) -> WacliApp:
    """Wire store, reconciler, navigation and persistence; restore state from disk."""
    store = StateStore(message_window=int(config.number("message_window")))
    persistence = PersistenceScheduler(
        store, config.data_dir, interval_s=config.number("persist_interval_s")
    )
    # Synchronous restore before the first render.
    persistence.restore()
    reconciler = EventReconciler(
        store,
        transport_factory,
        reconnect_delay_s=config.number("reconnect_delay_s"),
        sync_hold_s=config.number("sync_hold_s"),
        media_opener=media_opener,
    )
    navigation = NavigationMachine(store, page_size=int(config.number("chats_per_page")))
    return WacliApp(store, reconciler, navigation, persistence, config)
