"""Per-pane key dispatch tables.

All non-text keyboard input routes through WacliApp.on_key based on the
focused pane. Tab, shift+tab and escape are priority bindings on the app
so the input box never swallows them.
"""

from wacli.app.navigation import Pane

# [LAW:one-source-of-truth] Key→action mapping per focused pane.
# INPUT is empty because the Input widget consumes printable keys.
PANE_KEYMAP: dict[Pane, dict[str, str]] = {
    Pane.INPUT: {},
    Pane.CHATS: {
        "up": "chat_move(-1)",
        "k": "chat_move(-1)",
        "down": "chat_move(1)",
        "j": "chat_move(1)",
        "enter": "focus_pane('messages')",
        "m": "toggle_members",
        "o": "open_media",
        "/": "start_search",
        "slash": "start_search",
        "[": "cycle_theme(-1)",
        "left_square_bracket": "cycle_theme(-1)",
        "]": "cycle_theme(1)",
        "right_square_bracket": "cycle_theme(1)",
    },
    Pane.MESSAGES: {
        "up": "message_move(-1)",
        "k": "message_move(-1)",
        "down": "message_move(1)",
        "j": "message_move(1)",
        "r": "reply",
        "x": "react",
        "m": "toggle_members",
        "o": "open_media",
    },
    Pane.MEMBERS: {
        "up": "member_move(-1)",
        "k": "member_move(-1)",
        "down": "member_move(1)",
        "j": "member_move(1)",
        "m": "toggle_members",
    },
}

# Footer hints per pane: (keys, description)
PANE_HINTS: dict[Pane, list[tuple[str, str]]] = {
    Pane.INPUT: [("tab", "chats"), ("enter", "send"), ("esc", "back/quit")],
    Pane.CHATS: [("↑↓/jk", "select"), ("/", "search"), ("m", "members"), ("o", "open media"), ("[]", "theme")],
    Pane.MESSAGES: [("↑↓/jk", "select"), ("r", "reply"), ("x", "react"), ("o", "open media")],
    Pane.MEMBERS: [("↑↓/jk", "select"), ("m", "close")],
}
