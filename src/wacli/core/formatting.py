"""Transport message payload → Message record.

The content tag (first meaningful key of ``raw["message"]``) decides the
text: plain and extended text map directly, every other kind becomes a
bracketed placeholder such as ``[image]``. The bracket convention is also
what the media-open action searches for, see is_media_placeholder().
"""

import wacli.core.identity
from wacli.core.models import Message, ReplyTo, coerce_int

MEDIA_PLACEHOLDER = "[Media]"

# Bookkeeping keys that ride along with real content and never name the kind.
_SKIP_KEYS = frozenset({"messageContextInfo", "senderKeyDistributionMessage"})

# Envelope kinds whose payload is another message content dict.
_WRAPPER_KEYS = ("ephemeralMessage", "viewOnceMessage", "viewOnceMessageV2", "documentWithCaptionMessage")

# Content kinds that carry no displayable message at all.
_SILENT_KINDS = frozenset({"protocolMessage"})


def _unwrap(content: dict) -> dict:
    for _ in range(3):
        for key in _WRAPPER_KEYS:
            inner = content.get(key)
            if isinstance(inner, dict) and isinstance(inner.get("message"), dict):
                content = inner["message"]
                break
        else:
            return content
    return content


def content_kind(content: dict) -> str | None:
    """First content key that is not bookkeeping, or None."""
    for key in content:
        if key not in _SKIP_KEYS:
            return key
    return None


def placeholder_for(kind: str | None) -> str:
    label = (kind or "").replace("Message", "")
    return f"[{label}]" if label else MEDIA_PLACEHOLDER


def is_media_placeholder(text: str) -> bool:
    return text.startswith("[") and text.endswith("]") and len(text) > 2


def _quoted_text(quoted: dict) -> str:
    quoted = _unwrap(quoted)
    if isinstance(quoted.get("conversation"), str):
        return quoted["conversation"]
    extended = quoted.get("extendedTextMessage")
    if isinstance(extended, dict) and isinstance(extended.get("text"), str):
        return extended["text"]
    return MEDIA_PLACEHOLDER


def _reply_context(body: object) -> ReplyTo | None:
    if not isinstance(body, dict):
        return None
    info = body.get("contextInfo")
    if not isinstance(info, dict):
        return None
    quoted = info.get("quotedMessage")
    if not isinstance(quoted, dict):
        return None
    participant = info.get("participant")
    return ReplyTo(
        text=_quoted_text(quoted),
        participant=wacli.core.identity.normalize(participant) if isinstance(participant, str) else None,
    )


def chat_id_of(raw: dict) -> str | None:
    key = raw.get("key") if isinstance(raw, dict) else None
    if not isinstance(key, dict) or not isinstance(key.get("remoteJid"), str):
        return None
    return wacli.core.identity.normalize(key["remoteJid"])


def format_message(raw: dict) -> Message | None:
    """Build a Message from a transport payload.

    Returns None when the payload has no key, no content, or only
    protocol/bookkeeping content.
    """
    chat_id = chat_id_of(raw)
    if chat_id is None:
        return None
    key = raw["key"]
    content = raw.get("message")
    if not isinstance(content, dict) or not content:
        return None
    content = _unwrap(content)

    kind = content_kind(content)
    if kind is None or kind in _SILENT_KINDS:
        return None
    body = content.get(kind)

    if kind == "conversation":
        text = body if isinstance(body, str) else ""
    elif kind == "extendedTextMessage":
        text = str(body.get("text") or "") if isinstance(body, dict) else ""
    else:
        text = placeholder_for(kind)

    participant = key.get("participant")
    sender = wacli.core.identity.normalize(participant) if isinstance(participant, str) and participant else chat_id

    return Message(
        id=str(key.get("id") or ""),
        sender=sender,
        text=text,
        timestamp=coerce_int(raw.get("messageTimestamp")),
        is_me=bool(key.get("fromMe")),
        raw=raw,
        reply_to=_reply_context(body),
    )
