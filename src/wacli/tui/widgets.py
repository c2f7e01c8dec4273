"""Panel widgets. Thin Static wrappers around the pure renderers.

Panels never read the store themselves; the app pushes rendered Text in
on every coalesced refresh.
"""

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import VerticalScroll
from textual.widgets import Static


class _Panel(Static):
    """Static with a bordered, focus-highlighted frame."""

    def __init__(self, title: str = "", **kwargs):
        super().__init__("", **kwargs)
        self.border_title = title
        self.rendered = Text()

    def show(self, content: Text, focused: bool, title: str | None = None) -> None:
        if title is not None:
            self.border_title = title
        self.set_class(focused, "-pane-focused")
        self.rendered = content
        self.update(content)


class ChatListPanel(_Panel):
    DEFAULT_CSS = """
    ChatListPanel {
        width: 32;
        height: 1fr;
        border: round $primary-muted;
        padding: 0 1;
    }
    ChatListPanel.-pane-focused {
        border: round $accent;
    }
    """


class MessagePanel(VerticalScroll):
    """Scrollable message window; follows the newest message unless one is selected."""

    DEFAULT_CSS = """
    MessagePanel {
        width: 1fr;
        height: 1fr;
        border: round $primary-muted;
        padding: 0 1;
    }
    MessagePanel.-pane-focused {
        border: round $accent;
    }
    MessagePanel > Static {
        height: auto;
    }
    """

    def __init__(self, title: str = "", **kwargs):
        super().__init__(**kwargs)
        self.border_title = title
        self.can_focus = False
        self._body = Static("")
        self.rendered = Text()

    def compose(self) -> ComposeResult:
        yield self._body

    def show(self, content: Text, focused: bool, title: str | None = None, selected_line: int | None = None) -> None:
        if title is not None:
            self.border_title = title
        self.set_class(focused, "-pane-focused")
        self.rendered = content
        self._body.update(content)
        if selected_line is None:
            self.call_after_refresh(self.scroll_end, animate=False)
        else:
            target = max(0, selected_line - self.size.height // 2)
            self.call_after_refresh(self.scroll_to, y=target, animate=False)


class MembersPanel(_Panel):
    DEFAULT_CSS = """
    MembersPanel {
        width: 28;
        height: 1fr;
        border: round $primary-muted;
        padding: 0 1;
        display: none;
    }
    MembersPanel.-visible {
        display: block;
    }
    MembersPanel.-pane-focused {
        border: round $accent;
    }
    """


class _Line(Static):
    """Static that remembers the Text it was last given."""

    rendered = Text()

    def show(self, content: Text) -> None:
        self.rendered = content
        self.update(content)


class QrPanel(_Line):
    DEFAULT_CSS = """
    QrPanel {
        height: auto;
        max-height: 60%;
        border: solid $warning;
        padding: 0 1;
        display: none;
    }
    QrPanel.-visible {
        display: block;
    }
    """


class StatusBar(_Line):
    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        dock: bottom;
        background: $panel;
        color: $text;
        padding: 0 1;
    }
    """
