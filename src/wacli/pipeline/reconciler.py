"""Event reconciler: transport events and user actions → state store merges.

// [LAW:single-enforcer] dispatch() is the only place transport events touch the store.
// [LAW:dataflow-not-control-flow] Handlers are selected from EVENT_HANDLERS by kind.

Connection lifecycle:

    disconnected → connecting ⇄ awaiting-qr → connected
    connected/connecting → (close) → reconnecting → connecting
    any → (logout close) → closed

Every connect builds a fresh ClientHandle; events emitted through an older
handle are dropped. Async work (sends, fetches, downloads) runs as tracked
tasks whose results re-enter through the same single event loop.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from enum import Enum

import wacli.core.formatting
import wacli.core.identity
import wacli.io.logging_setup
from wacli.app.state_store import StateStore
from wacli.core.models import ChatPatch, Contact, Message
from wacli.pipeline.event_types import (
    ChatsSetEvent,
    ChatsUpdateEvent,
    ChatsUpsertEvent,
    ConnectionPhase,
    ConnectionUpdateEvent,
    ContactsSetEvent,
    ContactsUpdateEvent,
    ContactsUpsertEvent,
    HistorySetEvent,
    MessagesUpsertEvent,
    PresenceUpdateEvent,
    QrChallengeEvent,
    TransportEvent,
    TransportEventKind,
    parse_transport_event,
)
from wacli.pipeline.transport import ClientHandle, PermissionDeniedError, Transport, TransportError

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY_S = 5.0
DEFAULT_SYNC_HOLD_S = 2.0
REACTION_EMOJI = "❤️"

# Sync progress stays below completion until the final history batch.
SYNC_PROGRESS_CAP = 95
SYNC_PROGRESS_STEP = 5

# Broadcast pseudo-chat carrying status updates, never a conversation.
_STATUS_BROADCAST = "status@broadcast"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    AWAITING_QR = "awaiting-qr"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class EventReconciler:
    """Owns the connection lifecycle and every store mutation driven by it."""

    def __init__(
        self,
        store: StateStore,
        transport_factory: Callable[[], Transport],
        *,
        reconnect_delay_s: float = DEFAULT_RECONNECT_DELAY_S,
        sync_hold_s: float = DEFAULT_SYNC_HOLD_S,
        media_opener: Callable[[str], None] | None = None,
        diagnostics_limit: int = 50,
    ):
        self._store = store
        self._transport_factory = transport_factory
        self._reconnect_delay_s = reconnect_delay_s
        self._sync_hold_s = sync_hold_s
        self._media_opener = media_opener

        self.state = ConnectionState.DISCONNECTED
        self.qr: str | None = None
        self.sync_progress: int | None = None  # None = not syncing
        self.last_error: str | None = None
        self._diagnostics = wacli.io.logging_setup.DiagnosticsHandler(limit=diagnostics_limit)

        self._handle: ClientHandle | None = None
        self._handle_generation = 0
        self._selected_chat_id: str | None = None
        self._selection_generation = 0
        self._effects_generation = -1  # selection generation whose transport side effects ran
        self._metadata_inflight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._reconnect_timer: asyncio.TimerHandle | None = None
        self._sync_timer: asyncio.TimerHandle | None = None

        # Callbacks: the app registers these
        self.on_change: Callable[[], None] | None = None
        self.on_logged_out: Callable[[], None] | None = None

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def handle(self) -> ClientHandle | None:
        return self._handle

    @property
    def diagnostics(self) -> deque[str]:
        """Recent warning+ records from event handling and background work."""
        return self._diagnostics.entries

    @property
    def selection_generation(self) -> int:
        return self._selection_generation

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def _report(self, level: int, msg: str, *args: object, exc_info: BaseException | None = None) -> None:
        wacli.io.logging_setup.record_diagnostic(logger, self._diagnostics, level, msg, *args, exc_info=exc_info)

    # ─── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        """Open the first connection. Must run inside the event loop."""
        self._connect()

    def _connect(self) -> None:
        self._handle_generation += 1
        generation = self._handle_generation
        handle = ClientHandle(transport=self._transport_factory(), generation=generation)
        self._handle = handle
        self.state = ConnectionState.CONNECTING
        logger.info("Connecting (handle generation %d)", generation)

        def emit(name: str, payload: object) -> None:
            self.receive(name, payload, generation=generation)

        self._spawn(self._run_connect(handle, emit), "connect")
        self._changed()

    async def _run_connect(self, handle: ClientHandle, emit) -> None:
        try:
            await handle.transport.connect(emit)
        except TransportError as e:
            logger.warning("Connect failed: %s", e)
            if self._handle is handle:
                self._on_closed(logged_out=False)

    def _schedule(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    def _reconnect(self) -> None:
        self._reconnect_timer = None
        if self.state is ConnectionState.RECONNECTING:
            self._connect()

    def _cancel_timers(self) -> None:
        for timer in (self._reconnect_timer, self._sync_timer):
            if timer is not None:
                timer.cancel()
        self._reconnect_timer = None
        self._sync_timer = None

    def _on_closed(self, logged_out: bool) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        handle, self._handle = self._handle, None
        # Anything the torn-down transport emits from here on is stale.
        self._handle_generation += 1
        self._metadata_inflight.clear()
        if logged_out:
            self._cancel_timers()
            self.state = ConnectionState.CLOSED
            self.qr = None
            self.sync_progress = None
            logger.info("Connection closed: logged out")
            if self.on_logged_out is not None:
                self.on_logged_out()
            return
        self.state = ConnectionState.RECONNECTING
        logger.info("Connection closed; reconnecting in %.1fs", self._reconnect_delay_s)
        if handle is not None:
            self._spawn(self._close_transport(handle), "close")
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
        self._reconnect_timer = self._schedule(self._reconnect_delay_s, self._reconnect)

    async def _close_transport(self, handle: ClientHandle) -> None:
        try:
            await handle.transport.close()
        except TransportError as e:
            logger.warning("Transport close failed: %s", e)

    async def shutdown(self) -> None:
        """Cancel timers and in-flight work, close the transport."""
        self._cancel_timers()
        handle, self._handle = self._handle, None
        self._handle_generation += 1
        if self.state is not ConnectionState.CLOSED:
            self.state = ConnectionState.DISCONNECTED
        if handle is not None:
            await self._close_transport(handle)
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def logout(self) -> None:
        """Explicit logout: terminal, no reconnect."""
        handle = self._handle
        if handle is not None:
            self._spawn(self._run_outbound("Logout", handle.transport.logout()), "logout")
        self._on_closed(logged_out=True)
        self._changed()

    # ─── Inbound events ───────────────────────────────────────────────

    def receive(self, name: str, payload: object, generation: int | None = None) -> None:
        """Parse a raw transport payload and dispatch it."""
        if generation is not None and generation != self._handle_generation:
            logger.debug("Dropping %s from stale handle generation %d", name, generation)
            return
        try:
            event = parse_transport_event(name, payload)
        except ValueError as e:
            self._report(logging.WARNING, "Ignoring transport event: %s", e)
            return
        self.dispatch(event)

    def dispatch(self, event: TransportEvent) -> None:
        """Apply one typed event. Handler failures are logged and contained."""
        handler = EVENT_HANDLERS.get(event.kind, _noop)
        try:
            handler(self, event)
        except Exception as e:
            self._report(logging.ERROR, "Unhandled error applying %s: %r", event.kind.value, e, exc_info=e)
        self._changed()

    def _advance_sync(self, event: HistorySetEvent) -> None:
        if event.is_latest:
            self.sync_progress = 100
            if self._sync_timer is not None:
                self._sync_timer.cancel()
            self._sync_timer = self._schedule(self._sync_hold_s, self._clear_sync)
            return
        current = self.sync_progress or 0
        candidate = event.progress if event.progress is not None else current + SYNC_PROGRESS_STEP
        self.sync_progress = max(current, min(SYNC_PROGRESS_CAP, candidate))

    def _clear_sync(self) -> None:
        self._sync_timer = None
        self.sync_progress = None
        self._changed()

    def apply_message(self, raw: dict, notify: bool) -> Message | None:
        """Record push name, format and append one message payload."""
        chat_id = wacli.core.formatting.chat_id_of(raw)
        if chat_id is None or chat_id == _STATUS_BROADCAST:
            return None
        message = wacli.core.formatting.format_message(raw)
        is_group = wacli.core.identity.is_group_id(chat_id)

        push_name = raw.get("pushName")
        from_me = message.is_me if message is not None else bool((raw.get("key") or {}).get("fromMe"))
        if isinstance(push_name, str) and push_name.strip() and not from_me:
            sender = message.sender if message is not None else chat_id
            self._store.upsert_contacts([Contact(id=sender, notify=push_name)])
            if not is_group:
                self._store.upsert_chat(chat_id, ChatPatch(name=push_name))

        if message is None:
            return None
        self._store.append_message(chat_id, message)

        # Catch-up batches only move the preview forward, never back.
        chat = self._store.get_chat(chat_id)
        newest = notify or chat is None or not chat.last_message or message.timestamp >= chat.timestamp
        if newest:
            self._store.upsert_chat(
                chat_id,
                ChatPatch(last_message=message.text, timestamp=message.timestamp or None),
            )
        if notify and not message.is_me:
            self._store.increment_unread(chat_id)
        return message

    # ─── Selection side effects ───────────────────────────────────────

    def select_chat(self, chat_id: str | None) -> None:
        """React to a selection change: mark read, fetch group metadata once."""
        self._selection_generation += 1
        self._selected_chat_id = wacli.core.identity.normalize(chat_id) if chat_id else None
        if self._selected_chat_id is None:
            return
        canonical = self._selected_chat_id
        chat = self._store.get_chat(canonical)
        if chat is None:
            return
        self._store.mark_read(canonical)
        if self._handle is not None:
            self._run_selection_effects(self._handle)

    def _run_selection_effects(self, handle: ClientHandle) -> None:
        """Transport half of a selection: mark read remotely, fetch missing group metadata.

        Runs once per selection generation. A selection made while no client
        exists is caught up when the next connection opens.
        """
        canonical = self._selected_chat_id
        chat = self._store.get_chat(canonical) if canonical else None
        if chat is None or self._effects_generation == self._selection_generation:
            return
        self._effects_generation = self._selection_generation
        self._spawn(self._run_outbound("Mark read", handle.transport.mark_read(canonical)), "mark_read")
        if chat.is_group and chat.group_metadata is None and canonical not in self._metadata_inflight:
            self._metadata_inflight.add(canonical)
            self._spawn(
                self._fetch_group_metadata(handle, canonical, self._selection_generation),
                "fetch_group_metadata",
            )

    async def _fetch_group_metadata(self, handle: ClientHandle, chat_id: str, generation: int) -> None:
        try:
            metadata = await handle.transport.fetch_group_metadata(chat_id)
        except PermissionDeniedError:
            logger.debug("Metadata for %s not available to this account", chat_id)
            return
        except TransportError as e:
            self._report(logging.WARNING, "Group metadata fetch for %s failed: %s", chat_id, e)
            return
        finally:
            self._metadata_inflight.discard(chat_id)
        # A selection change in between makes the result stale unless the same chat is back.
        if generation != self._selection_generation and self._selected_chat_id != chat_id:
            logger.debug("Discarding stale metadata for %s", chat_id)
            return
        self._store.cache_group_metadata(chat_id, metadata)
        self._changed()

    # ─── Outbound actions ─────────────────────────────────────────────

    def _require_handle(self) -> ClientHandle | None:
        if self._handle is None:
            self.set_error("Not connected")
        return self._handle

    def send_text(self, chat_id: str, text: str, quoted: Message | None = None) -> bool:
        handle = self._require_handle()
        if handle is None:
            return False
        coro = handle.transport.send_text(chat_id, text, quoted.raw if quoted is not None else None)
        self._spawn(self._run_outbound("Send", coro), "send_text")
        return True

    def send_media(self, chat_id: str, file_path: str, kind: str) -> bool:
        handle = self._require_handle()
        if handle is None:
            return False
        self._spawn(
            self._run_outbound("Send media", handle.transport.send_media(chat_id, file_path, kind)),
            "send_media",
        )
        return True

    def react(self, chat_id: str, message: Message, emoji: str = REACTION_EMOJI) -> bool:
        handle = self._require_handle()
        if handle is None:
            return False
        self._spawn(
            self._run_outbound("Reaction", handle.transport.send_reaction(chat_id, message.raw, emoji)),
            "send_reaction",
        )
        return True

    def open_last_media(self, chat_id: str | None) -> bool:
        message = self._store.last_media_message(chat_id)
        if message is None:
            self.set_error("No media in this chat")
            return False
        handle = self._require_handle()
        if handle is None:
            return False
        self._spawn(self._download_and_open(handle, message), "download_media")
        return True

    async def _download_and_open(self, handle: ClientHandle, message: Message) -> None:
        try:
            path = await handle.transport.download_media(message.raw)
        except TransportError as e:
            logger.warning("Media download failed: %s", e)
            self.set_error(f"Download failed: {e}")
            return
        logger.info("Downloaded media to %s", path)
        if self._media_opener is not None:
            self._media_opener(path)

    async def _run_outbound(self, label: str, coro) -> None:
        try:
            await coro
        except TransportError as e:
            logger.warning("%s failed: %s", label, e)
            self.set_error(f"{label} failed: {e}")

    # ─── Inline error ─────────────────────────────────────────────────

    def set_error(self, message: str) -> None:
        self.last_error = message
        self._changed()

    def dismiss_error(self) -> None:
        if self.last_error is not None:
            self.last_error = None
            self._changed()

    # ─── Task tracking ────────────────────────────────────────────────

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=f"wacli:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._report(logging.ERROR, "Task %s failed: %r", task.get_name(), exc, exc_info=exc)
            self.set_error(f"Unexpected error: {exc}")

    async def wait_idle(self) -> None:
        """Wait for every in-flight task, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# ─── Event handlers ──────────────────────────────────────────────────────────


def _handle_connection_update(rec: EventReconciler, event: ConnectionUpdateEvent) -> None:
    if event.phase is ConnectionPhase.OPEN:
        rec.state = ConnectionState.CONNECTED
        rec.qr = None
        logger.info("Connected")
        if rec.handle is not None:
            rec._run_selection_effects(rec.handle)
    elif event.phase is ConnectionPhase.CLOSE:
        rec._on_closed(logged_out=event.logged_out)
    elif rec.state is not ConnectionState.AWAITING_QR:
        rec.state = ConnectionState.CONNECTING


def _handle_qr(rec: EventReconciler, event: QrChallengeEvent) -> None:
    rec.state = ConnectionState.AWAITING_QR
    rec.qr = event.qr


def _handle_history_set(rec: EventReconciler, event: HistorySetEvent) -> None:
    for chat in event.chats:
        rec.store.upsert_chat(chat.id, chat.patch)
    rec.store.upsert_contacts(event.contacts)
    for raw in event.messages:
        rec.apply_message(raw, notify=False)
    rec._advance_sync(event)


def _handle_chats(rec: EventReconciler, event: ChatsSetEvent | ChatsUpsertEvent | ChatsUpdateEvent) -> None:
    for chat in event.chats:
        rec.store.upsert_chat(chat.id, chat.patch)


def _handle_contacts(
    rec: EventReconciler, event: ContactsSetEvent | ContactsUpsertEvent | ContactsUpdateEvent
) -> None:
    rec.store.upsert_contacts(event.contacts)


def _handle_presence(rec: EventReconciler, event: PresenceUpdateEvent) -> None:
    rec.store.set_presence(event.chat_id, event.presence)


def _handle_messages_upsert(rec: EventReconciler, event: MessagesUpsertEvent) -> None:
    if event.upsert_type not in ("notify", "append"):
        logger.debug("Skipping messages.upsert of type %r", event.upsert_type)
        return
    for raw in event.messages:
        rec.apply_message(raw, notify=event.is_notification)


def _noop(rec: EventReconciler, event: TransportEvent) -> None:
    """No-op handler for events that need no action."""


EVENT_HANDLERS: dict[TransportEventKind, Callable[[EventReconciler, TransportEvent], None]] = {
    TransportEventKind.CONNECTION_UPDATE: _handle_connection_update,
    TransportEventKind.QR_CHALLENGE: _handle_qr,
    TransportEventKind.HISTORY_SET: _handle_history_set,
    TransportEventKind.CHATS_SET: _handle_chats,
    TransportEventKind.CHATS_UPSERT: _handle_chats,
    TransportEventKind.CHATS_UPDATE: _handle_chats,
    TransportEventKind.CONTACTS_SET: _handle_contacts,
    TransportEventKind.CONTACTS_UPSERT: _handle_contacts,
    TransportEventKind.CONTACTS_UPDATE: _handle_contacts,
    TransportEventKind.PRESENCE_UPDATE: _handle_presence,
    TransportEventKind.MESSAGES_UPSERT: _handle_messages_upsert,
}
