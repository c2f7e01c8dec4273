"""Rendering logic - pure functions building Rich Text from projections.

No widget state here: every function takes plain values and returns Text,
so panels can be tested without running the app.
"""

from collections.abc import Callable
from datetime import datetime

from rich.text import Text

from wacli.app.navigation import Pane
from wacli.core.models import Chat, Message, Participant
from wacli.pipeline.reconciler import ConnectionState
import wacli.tui.input_modes

# [LAW:one-source-of-truth] Semantic styles used across panels.
STYLES: dict[str, str] = {
    "selected": "reverse",
    "selected_unfocused": "bold",
    "unread": "bold green",
    "me": "cyan",
    "peer": "magenta",
    "muted": "dim",
    "reply": "italic dim",
    "error": "bold red",
    "ok": "green",
    "warn": "yellow",
    "key": "bold",
}

_STATE_LABELS: dict[ConnectionState, tuple[str, str]] = {
    ConnectionState.DISCONNECTED: ("Disconnected", "muted"),
    ConnectionState.AWAITING_QR: ("Scan QR code to log in", "warn"),
    ConnectionState.CONNECTING: ("Connecting…", "warn"),
    ConnectionState.CONNECTED: ("Connected", "ok"),
    ConnectionState.RECONNECTING: ("Connection lost, reconnecting…", "warn"),
    ConnectionState.CLOSED: ("Logged out", "error"),
}


def _clip(text: str, width: int) -> str:
    text = " ".join(text.split())
    if width <= 1 or len(text) <= width:
        return text
    return text[: width - 1] + "…"


def format_time(timestamp: int) -> str:
    if timestamp <= 0:
        return "--:--"
    return datetime.fromtimestamp(timestamp).strftime("%H:%M")


def render_chat_list(
    chats: list[Chat],
    name_of: Callable[[str], str],
    selected_id: str | None,
    focused: bool,
    width: int = 30,
) -> Text:
    """Render one page of the chat list."""
    text = Text()
    if not chats:
        text.append("No chats", style=STYLES["muted"])
        return text
    for i, chat in enumerate(chats):
        if i:
            text.append("\n")
        marker = "👥 " if chat.is_group else ""
        unread = f" ({chat.unread_count})" if chat.unread_count else ""
        label = _clip(f"{marker}{name_of(chat.id)}", max(4, width - len(unread)))
        style = ""
        if chat.id == selected_id:
            style = STYLES["selected"] if focused else STYLES["selected_unfocused"]
        text.append(label, style=style)
        if unread:
            text.append(unread, style=STYLES["unread"])
    return text


def render_chat_title(chat: Chat | None, name: str) -> str:
    if chat is None:
        return "No chat selected"
    if chat.presence:
        return f"{name} · {chat.presence}"
    return name


def render_messages(
    messages: list[Message],
    name_of: Callable[[str], str],
    selected_index: int,
    focused: bool,
    show_sender: bool,
) -> Text:
    """Render a chat's message window, oldest first."""
    text = Text()
    if not messages:
        text.append("No messages", style=STYLES["muted"])
        return text
    for i, message in enumerate(messages):
        if i:
            text.append("\n")
        if message.reply_to is not None:
            who = name_of(message.reply_to.participant) if message.reply_to.participant else ""
            prefix = f"{who}: " if who else ""
            text.append(f"  ↳ {prefix}{_clip(message.reply_to.text, 60)}\n", style=STYLES["reply"])
        line = Text()
        line.append(format_time(message.timestamp) + " ", style=STYLES["muted"])
        if message.is_me:
            line.append("You", style=STYLES["me"])
        else:
            line.append(name_of(message.sender) if show_sender else "Them", style=STYLES["peer"])
        line.append(": " + message.text)
        if i == selected_index:
            line.stylize(STYLES["selected"] if focused else STYLES["selected_unfocused"])
        text.append_text(line)
    return text


def message_line(messages: list[Message], index: int) -> int | None:
    """Line offset of message ``index`` in render_messages output (before wrapping)."""
    if not 0 <= index < len(messages):
        return None
    line = sum(2 if m.reply_to is not None else 1 for m in messages[:index])
    return line + (1 if messages[index].reply_to is not None else 0)


def render_members(
    participants: tuple[Participant, ...],
    name_of: Callable[[str], str],
    selected_index: int,
    focused: bool,
) -> Text:
    text = Text()
    text.append(f"Members ({len(participants)})", style=STYLES["key"])
    for i, participant in enumerate(participants):
        text.append("\n")
        badge = " ★" if participant.admin else ""
        style = ""
        if i == selected_index and focused:
            style = STYLES["selected"]
        text.append(f"{name_of(participant.id)}{badge}", style=style)
    return text


def render_status(
    state: ConnectionState,
    sync_progress: int | None,
    error: str | None,
    reply_target: Message | None,
    focused_pane: Pane,
) -> Text:
    """Single status line: connection, sync, error or reply banner, key hints."""
    label, style = _STATE_LABELS[state]
    text = Text()
    text.append(label, style=STYLES[style])
    if sync_progress is not None:
        text.append(f"  Syncing {sync_progress}%", style=STYLES["warn"])
    if error:
        text.append("  ⚠ " + error, style=STYLES["error"])
        text.append(" (/clear)", style=STYLES["muted"])
    elif reply_target is not None:
        text.append("  Replying to: ", style=STYLES["muted"])
        text.append(_clip(reply_target.text, 40), style=STYLES["reply"])
    for keys, desc in wacli.tui.input_modes.PANE_HINTS[focused_pane]:
        text.append("  ")
        text.append(keys, style=STYLES["key"])
        text.append(" " + desc, style=STYLES["muted"])
    return text


def render_qr(qr: str) -> Text:
    """QR payload as plain text. Rasterization is the transport's job."""
    text = Text()
    text.append("Link this device: scan the QR challenge below\n\n", style=STYLES["key"])
    text.append(qr)
    return text
