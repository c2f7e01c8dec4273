"""Tests for EventReconciler: connection lifecycle, event merges, side effects."""

import asyncio

import wacli.pipeline.reconciler as reconciler_module
from wacli.core.models import ChatPatch
from wacli.pipeline.event_types import TransportEventKind
from wacli.pipeline.reconciler import ConnectionState, EventReconciler
from wacli.pipeline.replay import ReplayTransport
from wacli.pipeline.transport import TransportError
from tests.harness.builders import group_jid, jid, make_chat_raw, make_history, make_message_raw
from tests.harness.transport import FailingSendTransport, GatedTransport, TransportFactory, recording_of

ALICE = jid(15551234)
BOB = jid(15559999)
GROUP = group_jid()

OPEN = ("connection.update", {"connection": "open"})
DROPPED = ("connection.update", {"connection": "close", "lastDisconnect": {"error": {"output": {"statusCode": 428}}}})
LOGGED_OUT = ("connection.update", {"connection": "close", "lastDisconnect": {"error": {"output": {"statusCode": 401}}}})


def _make(store, *transports, **kwargs):
    factory = TransportFactory(*transports)
    kwargs.setdefault("reconnect_delay_s", 0.01)
    kwargs.setdefault("sync_hold_s", 0.01)
    return EventReconciler(store, factory, **kwargs), factory


async def _connected(store, transport=None, **kwargs):
    rec, factory = _make(store, transport or ReplayTransport(recording_of(OPEN)), **kwargs)
    rec.start()
    await rec.wait_idle()
    return rec, factory


async def _turns(n: int = 5) -> None:
    for _ in range(n):
        await asyncio.sleep(0)


class _ClosesOnLogout(ReplayTransport):
    """Emits ``close_event`` through the connect callback when logged out."""

    def __init__(self, close_event, recording=None):
        super().__init__(recording)
        self._close_event = close_event
        self._emit = None

    async def connect(self, emit):
        self._emit = emit
        await super().connect(emit)

    async def logout(self):
        await super().logout()
        self._emit(*self._close_event)


# ─── Connection lifecycle ─────────────────────────────────────────────────────


class TestLifecycle:
    async def test_connect_then_open(self, store):
        rec, factory = await _connected(store)
        assert rec.state is ConnectionState.CONNECTED
        assert rec.handle is not None
        assert factory.created[0].calls[0] == ("connect",)

    async def test_qr_replaced_and_cleared_on_open(self, store):
        transport = ReplayTransport(
            recording_of(
                ("qr", {"qr": "first"}),
                ("connection.update", {"connection": "connecting"}),
                ("connection.update", {"qr": "second"}),
            )
        )
        rec, _ = await _connected(store, transport)
        assert rec.state is ConnectionState.AWAITING_QR
        assert rec.qr == "second"

        rec.receive(*OPEN, generation=rec.handle.generation)
        assert rec.state is ConnectionState.CONNECTED
        assert rec.qr is None

    async def test_dropped_connection_reconnects(self, store):
        first = ReplayTransport(recording_of(OPEN, DROPPED))
        second = ReplayTransport(recording_of(OPEN))
        rec, factory = _make(store, first, second)
        rec.start()
        await rec.wait_idle()
        assert rec.state is ConnectionState.RECONNECTING
        assert rec.handle is None

        await asyncio.sleep(0.05)
        await rec.wait_idle()
        assert rec.state is ConnectionState.CONNECTED
        assert factory.created == [first, second]
        assert rec.handle.generation == 2

    async def test_logout_close_is_terminal(self, store):
        logged_out = []
        rec, factory = _make(store, ReplayTransport(recording_of(OPEN, LOGGED_OUT)))
        rec.on_logged_out = lambda: logged_out.append(True)
        rec.start()
        await rec.wait_idle()
        await asyncio.sleep(0.05)

        assert rec.state is ConnectionState.CLOSED
        assert logged_out == [True]
        assert len(factory.created) == 1

    async def test_events_from_stale_handle_are_dropped(self, store):
        rec, _ = _make(store, ReplayTransport(recording_of(OPEN, DROPPED)), ReplayTransport(recording_of(OPEN)))
        rec.start()
        await rec.wait_idle()
        await asyncio.sleep(0.05)
        await rec.wait_idle()
        assert rec.handle.generation == 2

        rec.receive("chats.upsert", [make_chat_raw(ALICE, "Alice")], generation=1)
        assert store.get_chat(ALICE) is None
        rec.receive("chats.upsert", [make_chat_raw(ALICE, "Alice")], generation=2)
        assert store.get_chat(ALICE).name == "Alice"

    async def test_failed_connect_schedules_reconnect(self, store):
        class _Refusing(ReplayTransport):
            async def connect(self, emit):
                raise TransportError("refused")

        rec, factory = _make(store, _Refusing(), ReplayTransport(recording_of(OPEN)))
        rec.start()
        await rec.wait_idle()
        assert rec.state is ConnectionState.RECONNECTING
        await asyncio.sleep(0.05)
        await rec.wait_idle()
        assert rec.state is ConnectionState.CONNECTED

    async def test_explicit_logout(self, store):
        rec, factory = await _connected(store)
        transport = factory.created[0]
        rec.logout()
        await rec.wait_idle()
        assert rec.state is ConnectionState.CLOSED
        assert ("logout",) in transport.calls
        assert rec.handle is None

    async def test_close_emitted_by_logout_does_not_reconnect(self, store):
        transport = _ClosesOnLogout(DROPPED, recording_of(OPEN))
        rec, factory = _make(store, transport)
        rec.start()
        await rec.wait_idle()

        rec.logout()
        await rec.wait_idle()
        await asyncio.sleep(0.05)
        await rec.wait_idle()
        assert rec.state is ConnectionState.CLOSED
        assert len(factory.created) == 1

    async def test_logged_out_close_after_logout_notifies_once(self, store):
        logged_out = []
        rec, _ = _make(store, _ClosesOnLogout(LOGGED_OUT, recording_of(OPEN)))
        rec.on_logged_out = lambda: logged_out.append(True)
        rec.start()
        await rec.wait_idle()

        rec.logout()
        await rec.wait_idle()
        assert logged_out == [True]
        assert rec.state is ConnectionState.CLOSED

    async def test_dropped_connection_closes_old_transport(self, store):
        first = ReplayTransport(recording_of(OPEN, DROPPED))
        rec, _ = _make(store, first, ReplayTransport(recording_of(OPEN)), reconnect_delay_s=1.0)
        rec.start()
        await rec.wait_idle()
        assert rec.state is ConnectionState.RECONNECTING
        assert ("close",) in first.calls
        await rec.shutdown()

    async def test_shutdown_closes_transport(self, store):
        rec, factory = await _connected(store)
        await rec.shutdown()
        assert ("close",) in factory.created[0].calls
        assert rec.state is ConnectionState.DISCONNECTED

    async def test_shutdown_waits_for_cancelled_work(self, store):
        transport = GatedTransport(recording_of(OPEN))
        rec, _ = await _connected(store, transport)
        store.upsert_chat(GROUP)
        rec.select_chat(GROUP)
        await _turns()
        assert transport.fetch_started == [GROUP]
        in_flight = list(rec._tasks)

        await rec.shutdown()
        assert in_flight
        assert all(task.done() for task in in_flight)


# ─── Inbound events ───────────────────────────────────────────────────────────


class TestHistoryAndSync:
    async def test_history_scenario_display_names(self, store):
        rec, _ = _make(store)
        rec.receive(
            "messaging-history.set",
            make_history(
                chats=[
                    make_chat_raw(ALICE),
                    make_chat_raw(BOB),
                    make_chat_raw(GROUP, "Alice, Bob, Carol"),
                ]
            ),
        )
        rec.receive("contacts.set", {"contacts": [{"id": ALICE, "notify": "Alice N"}]})

        assert store.display_name(ALICE) == "Alice N"
        assert store.display_name(GROUP) == "Group"
        assert store.display_name(BOB) == "15559999"

    async def test_progress_is_monotonic_and_capped(self, store):
        rec, _ = _make(store)
        rec.receive("messaging-history.set", make_history())
        assert rec.sync_progress == 5
        rec.receive("messaging-history.set", make_history())
        assert rec.sync_progress == 10
        rec.receive("messaging-history.set", make_history(progress=99))
        assert rec.sync_progress == 95
        rec.receive("messaging-history.set", make_history(progress=50))
        assert rec.sync_progress == 95

    async def test_final_batch_reports_complete_then_clears(self, store):
        rec, _ = _make(store, sync_hold_s=0.02)
        rec.receive("messaging-history.set", make_history(progress=30))
        rec.receive("messaging-history.set", make_history(is_latest=True))
        assert rec.sync_progress == 100
        await asyncio.sleep(0.06)
        assert rec.sync_progress is None

    async def test_history_messages_do_not_count_unread(self, store):
        rec, _ = _make(store)
        rec.receive("messaging-history.set", make_history(messages=[make_message_raw(ALICE, text="old")]))
        chat = store.get_chat(ALICE)
        assert chat.unread_count == 0
        assert chat.last_message == "old"
        assert [m.text for m in store.messages_for(ALICE)] == ["old"]


class TestMessages:
    async def test_notification_from_peer(self, store):
        rec, _ = _make(store)
        raw = make_message_raw("15551234@c.us", "m1", "hey", push_name="Alice P", timestamp=500)
        rec.receive("messages.upsert", {"messages": [raw], "type": "notify"})

        chat = store.get_chat(ALICE)
        assert chat.unread_count == 1
        assert chat.last_message == "hey"
        assert chat.timestamp == 500
        assert chat.name == "Alice P"
        assert store.contacts[ALICE].notify == "Alice P"
        assert store.display_name(ALICE) == "Alice P"

    async def test_self_sent_does_not_count_unread_or_name(self, store):
        rec, _ = _make(store)
        raw = make_message_raw(ALICE, from_me=True, push_name="Me")
        rec.receive("messages.upsert", {"messages": [raw], "type": "notify"})
        chat = store.get_chat(ALICE)
        assert chat.unread_count == 0
        assert chat.name is None
        assert ALICE not in store.contacts

    async def test_group_push_name_names_participant_not_chat(self, store):
        rec, _ = _make(store)
        raw = make_message_raw(GROUP, participant=BOB, push_name="Bobby")
        rec.receive("messages.upsert", {"messages": [raw], "type": "notify"})
        assert store.contacts[BOB].notify == "Bobby"
        assert store.get_chat(GROUP).name is None
        assert store.display_name(BOB) == "Bobby"

    async def test_append_batch_only_moves_preview_forward(self, store):
        rec, _ = _make(store)
        store.upsert_chat(ALICE, ChatPatch(last_message="newest", timestamp=200))
        raw = make_message_raw(ALICE, "old", "older text", timestamp=100)
        rec.receive("messages.upsert", {"messages": [raw], "type": "append"})
        chat = store.get_chat(ALICE)
        assert chat.last_message == "newest"
        assert chat.unread_count == 0
        assert len(store.messages_for(ALICE)) == 1

    async def test_other_upsert_types_ignored(self, store):
        rec, _ = _make(store)
        rec.receive("messages.upsert", {"messages": [make_message_raw(ALICE)], "type": "history"})
        assert store.get_chat(ALICE) is None

    async def test_status_broadcast_ignored(self, store):
        rec, _ = _make(store)
        rec.receive("messages.upsert", {"messages": [make_message_raw("status@broadcast")]})
        assert store.ordered_chats() == []

    async def test_presence_only_for_known_chats(self, store):
        rec, _ = _make(store)
        presence = {"id": ALICE, "presences": {ALICE: {"lastKnownPresence": "composing"}}}
        rec.receive("presence.update", presence)
        assert store.get_chat(ALICE) is None
        store.upsert_chat(ALICE)
        rec.receive("presence.update", presence)
        assert store.get_chat(ALICE).presence == "composing"


class TestErrorContainment:
    async def test_unknown_event_recorded(self, store):
        rec, _ = _make(store)
        rec.receive("calls.offer", {})
        assert any("calls.offer" in entry for entry in rec.diagnostics)

    async def test_handler_failure_does_not_stop_later_events(self, store, monkeypatch):
        def boom(rec, event):
            raise RuntimeError("handler exploded")

        monkeypatch.setitem(reconciler_module.EVENT_HANDLERS, TransportEventKind.PRESENCE_UPDATE, boom)
        rec, _ = _make(store)
        rec.receive("presence.update", {"id": ALICE})
        rec.receive("chats.upsert", [make_chat_raw(ALICE, "Alice")])
        assert store.get_chat(ALICE).name == "Alice"
        assert any("handler exploded" in entry for entry in rec.diagnostics)

    async def test_unexpected_task_failure_surfaces_error(self, store):
        class _Broken(ReplayTransport):
            async def send_text(self, chat_id, text, quoted_raw=None):
                raise RuntimeError("kaboom")

        rec, _ = await _connected(store, _Broken(recording_of(OPEN)))
        rec.send_text(ALICE, "hi")
        await rec.wait_idle()
        assert rec.last_error == "Unexpected error: kaboom"
        assert rec.state is ConnectionState.CONNECTED


# ─── Selection side effects ───────────────────────────────────────────────────


class TestSelection:
    async def test_select_marks_read(self, store):
        rec, factory = await _connected(store)
        store.upsert_chat(ALICE, ChatPatch(unread_count=3))
        rec.select_chat(ALICE)
        await rec.wait_idle()
        assert store.get_chat(ALICE).unread_count == 0
        assert ("mark_read", ALICE) in factory.created[0].calls

    async def test_group_metadata_fetched_exactly_once(self, store):
        meta = {"id": GROUP, "subject": "Family", "participants": [{"id": ALICE, "admin": "admin"}]}
        transport = GatedTransport(recording_of(OPEN, group_metadata={GROUP: meta}))
        rec, _ = await _connected(store, transport)
        store.upsert_chat(GROUP)

        rec.select_chat(GROUP)
        await _turns()
        rec.select_chat(GROUP)
        await _turns()
        assert transport.fetch_started == [GROUP]

        transport.release()
        await rec.wait_idle()
        chat = store.get_chat(GROUP)
        assert chat.group_metadata.subject == "Family"
        assert chat.group_metadata.participants[0].admin is True
        assert store.display_name(GROUP) == "Family"

        rec.select_chat(GROUP)
        await rec.wait_idle()
        assert transport.fetch_started == [GROUP]

    async def test_stale_metadata_discarded(self, store):
        meta = {"id": GROUP, "subject": "Family", "participants": []}
        transport = GatedTransport(recording_of(OPEN, group_metadata={GROUP: meta}))
        rec, _ = await _connected(store, transport)
        store.upsert_chat(GROUP)
        store.upsert_chat(ALICE)

        rec.select_chat(GROUP)
        await _turns()
        rec.select_chat(ALICE)
        transport.release()
        await rec.wait_idle()
        assert store.get_chat(GROUP).group_metadata is None

    async def test_permission_denied_is_silent(self, store):
        transport = ReplayTransport(recording_of(OPEN), denied_groups={GROUP})
        rec, _ = await _connected(store, transport)
        store.upsert_chat(GROUP)
        rec.select_chat(GROUP)
        await rec.wait_idle()
        assert store.get_chat(GROUP).group_metadata is None
        assert rec.last_error is None
        assert list(rec.diagnostics) == []

    async def test_other_fetch_failures_recorded(self, store):
        rec, _ = await _connected(store)
        store.upsert_chat(GROUP)
        rec.select_chat(GROUP)
        await rec.wait_idle()
        assert any("metadata" in entry for entry in rec.diagnostics)

    async def test_selection_while_reconnecting_catches_up_on_open(self, store):
        meta = {"id": GROUP, "subject": "Family", "participants": []}
        first = ReplayTransport(recording_of(OPEN, DROPPED))
        second = ReplayTransport(recording_of(OPEN, group_metadata={GROUP: meta}))
        rec, _ = _make(store, first, second, reconnect_delay_s=0.05)
        rec.start()
        await rec.wait_idle()
        assert rec.state is ConnectionState.RECONNECTING

        store.upsert_chat(GROUP, ChatPatch(unread_count=2))
        rec.select_chat(GROUP)
        assert store.get_chat(GROUP).unread_count == 0

        await asyncio.sleep(0.1)
        await rec.wait_idle()
        assert rec.state is ConnectionState.CONNECTED
        assert ("mark_read", GROUP) in second.calls
        assert second.calls.count(("fetch_group_metadata", GROUP)) == 1
        assert store.get_chat(GROUP).group_metadata.subject == "Family"

    async def test_reconnect_does_not_repeat_selection_effects(self, store):
        first = ReplayTransport(recording_of(OPEN))
        second = ReplayTransport(recording_of(OPEN))
        rec, _ = _make(store, first, second)
        rec.start()
        await rec.wait_idle()
        store.upsert_chat(ALICE)
        rec.select_chat(ALICE)
        await rec.wait_idle()
        assert ("mark_read", ALICE) in first.calls

        rec.receive(*DROPPED, generation=rec.handle.generation)
        await asyncio.sleep(0.05)
        await rec.wait_idle()
        assert rec.state is ConnectionState.CONNECTED
        assert ("mark_read", ALICE) not in second.calls

    async def test_unknown_chat_selection_is_inert(self, store):
        rec, factory = await _connected(store)
        rec.select_chat(ALICE)
        await rec.wait_idle()
        assert factory.created[0].calls == [("connect",)]


# ─── Outbound actions ─────────────────────────────────────────────────────────


class TestOutbound:
    async def test_send_requires_connection(self, store):
        rec, _ = _make(store)
        assert rec.send_text(ALICE, "hi") is False
        assert rec.last_error == "Not connected"

    async def test_send_text_with_quote(self, store):
        rec, factory = await _connected(store)
        rec.receive("messages.upsert", {"messages": [make_message_raw(ALICE, "q1", "question")]})
        quoted = store.messages_for(ALICE)[0]
        assert rec.send_text(ALICE, "answer", quoted)
        await rec.wait_idle()
        assert ("send_text", ALICE, "answer", quoted.raw) in factory.created[0].calls

    async def test_send_failure_is_inline_error(self, store):
        rec, _ = await _connected(store, FailingSendTransport(recording_of(OPEN)))
        rec.send_text(ALICE, "hi")
        await rec.wait_idle()
        assert rec.last_error == "Send failed: socket closed"
        rec.dismiss_error()
        assert rec.last_error is None

    async def test_react_uses_heart(self, store):
        rec, factory = await _connected(store)
        rec.receive("messages.upsert", {"messages": [make_message_raw(ALICE, "m1")]})
        rec.react(ALICE, store.messages_for(ALICE)[0])
        await rec.wait_idle()
        call = factory.created[0].calls[-1]
        assert call[0] == "send_reaction"
        assert call[3] == reconciler_module.REACTION_EMOJI

    async def test_open_media_without_media(self, store):
        rec, _ = await _connected(store)
        assert rec.open_last_media(ALICE) is False
        assert rec.last_error == "No media in this chat"

    async def test_open_media_downloads_and_opens(self, store, tmp_path):
        opened = []
        image = tmp_path / "pic.jpg"
        transport = ReplayTransport(recording_of(OPEN, media={"img1": str(image)}))
        rec, _ = await _connected(store, transport, media_opener=opened.append)
        raw = make_message_raw(ALICE, "img1", content={"imageMessage": {}})
        rec.receive("messages.upsert", {"messages": [raw]})
        assert rec.open_last_media(ALICE)
        await rec.wait_idle()
        assert opened == [str(image)]

    async def test_open_media_download_failure(self, store):
        rec, _ = await _connected(store)
        raw = make_message_raw(ALICE, "img1", content={"imageMessage": {}})
        rec.receive("messages.upsert", {"messages": [raw]})
        rec.open_last_media(ALICE)
        await rec.wait_idle()
        assert rec.last_error.startswith("Download failed:")

