"""Input-box command surface.

Plain text sends to the selected chat (quoting the reply target, if any).
Slash commands:

    /search <q>          filter the chat list by display name
    /send <path>         send a file (image by extension, else document)
    /alias <id> <name>   set a manual display name
    /unalias <id>        remove a manual display name
    /clear               clear the search filter and the inline error
    /logout              log out and exit

Invalid commands raise CommandError before touching any state; submit()
turns that into the inline, dismissible error.
"""

import logging
import os
from dataclasses import dataclass

import wacli.core.identity
from wacli.app.navigation import NavigationMachine
from wacli.pipeline.reconciler import EventReconciler

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif"})


class CommandError(Exception):
    """User-facing command failure. The message is shown inline."""


@dataclass(frozen=True)
class Command:
    name: str
    args: tuple[str, ...] = ()


# name → (min args, max args). The last arg keeps any remaining spaces.
_SIGNATURES: dict[str, tuple[int, int]] = {
    "search": (0, 1),
    "send": (1, 1),
    "alias": (2, 2),
    "unalias": (1, 1),
    "clear": (0, 0),
    "logout": (0, 0),
}

_USAGE: dict[str, str] = {
    "search": "/search <query>",
    "send": "/send <path>",
    "alias": "/alias <id> <name>",
    "unalias": "/unalias <id>",
    "clear": "/clear",
    "logout": "/logout",
}


def parse_command(text: str) -> Command:
    """Parse one line of input. Raises CommandError on unknown or malformed commands."""
    stripped = text.strip()
    if not stripped.startswith("/"):
        return Command("text", (text,))
    head, _, rest = stripped[1:].partition(" ")
    name = head.lower()
    signature = _SIGNATURES.get(name)
    if signature is None:
        raise CommandError(f"Unknown command: /{head}")
    min_args, max_args = signature
    rest = rest.strip()
    args: tuple[str, ...] = tuple(rest.split(None, max_args - 1)) if rest and max_args else ()
    if len(args) < min_args or (rest and not max_args):
        raise CommandError(f"Usage: {_USAGE[name]}")
    return Command(name, args)


def media_kind(path: str) -> str:
    return "image" if os.path.splitext(path)[1].lower() in IMAGE_EXTENSIONS else "document"


class CommandProcessor:
    """Executes parsed commands against navigation, store and transport."""

    def __init__(self, navigation: NavigationMachine, reconciler: EventReconciler):
        self._nav = navigation
        self._rec = reconciler

    def submit(self, text: str) -> bool:
        """Run one input line. Returns True when the input box should be cleared."""
        if not text.strip():
            return False
        try:
            command = parse_command(text)
            handler = getattr(self, f"_cmd_{command.name}")
            return handler(*command.args)
        except CommandError as e:
            logger.info("Command rejected: %s", e)
            self._rec.set_error(str(e))
            return False

    def _require_chat_id(self) -> str:
        chat = self._nav.selected_chat()
        if chat is None:
            raise CommandError("No chat selected")
        return chat.id

    def _cmd_text(self, text: str) -> bool:
        chat_id = self._require_chat_id()
        if not self._rec.send_text(chat_id, text, self._nav.state.reply_target):
            return False
        self._nav.clear_reply()
        self._rec.dismiss_error()
        return True

    def _cmd_search(self, query: str = "") -> bool:
        self._nav.set_search(query)
        return True

    def _cmd_send(self, raw_path: str) -> bool:
        path = os.path.expanduser(raw_path.strip().strip("'\""))
        if not os.path.isfile(path):
            raise CommandError(f"File not found: {raw_path}")
        chat_id = self._require_chat_id()
        if not self._rec.send_media(chat_id, path, media_kind(path)):
            return False
        self._rec.dismiss_error()
        return True

    def _cmd_alias(self, raw_id: str, name: str) -> bool:
        self._rec.store.set_override(wacli.core.identity.to_identifier(raw_id), name)
        self._rec.dismiss_error()
        return True

    def _cmd_unalias(self, raw_id: str) -> bool:
        jid = wacli.core.identity.to_identifier(raw_id)
        if not self._rec.store.clear_override(jid):
            raise CommandError(f"No alias set for {raw_id}")
        self._rec.dismiss_error()
        return True

    def _cmd_clear(self) -> bool:
        self._nav.set_search("")
        self._rec.dismiss_error()
        return True

    def _cmd_logout(self) -> bool:
        self._rec.logout()
        return True
