"""Textual in-process test harness for wacli.

Re-exports all public API for convenient imports:
    from tests.harness import run_app, press_and_settle, make_message_raw, ...
"""

from tests.harness.app_runner import run_app
from tests.harness.interactions import (
    press_and_settle,
    press_sequence,
    type_and_submit,
)
from tests.harness.assertions import (
    focused_pane,
    selected_chat_id,
    visible_chat_names,
    is_widget_visible,
    widget_text,
    input_value,
)
from tests.harness.builders import (
    jid,
    group_jid,
    make_message_raw,
    make_reply_raw,
    make_chat_raw,
    make_history,
    write_recording,
)
from tests.harness.transport import (
    GatedTransport,
    FailingSendTransport,
    TransportFactory,
    recording_of,
)

__all__ = [
    "run_app",
    "press_and_settle",
    "press_sequence",
    "type_and_submit",
    "focused_pane",
    "selected_chat_id",
    "visible_chat_names",
    "is_widget_visible",
    "widget_text",
    "input_value",
    "jid",
    "group_jid",
    "make_message_raw",
    "make_reply_raw",
    "make_chat_raw",
    "make_history",
    "write_recording",
    "GatedTransport",
    "FailingSendTransport",
    "TransportFactory",
    "recording_of",
]
