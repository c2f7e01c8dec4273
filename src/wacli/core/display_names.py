"""Best human-readable label for an identifier.

Pure over the contact and override mappings: no store access, no side
effects. The priority order below is load-bearing: metadata races routinely
deliver a numeric chat name before the real contact name, and bulk chat
payloads sometimes carry a comma-joined participant dump in ``name``.

Priority (first match wins):
  1. manual override
  2. contact address-book ``name`` (not member-list shaped)
  3. individuals: contact ``notify``
  4. groups: metadata subject → chat name hint → "Group"
  5. individuals: chat name hint (not numeric/punctuation only)
  6. local part of the normalized identifier

This module is STABLE: pure functions.
"""

import string
from collections.abc import Mapping

import wacli.core.identity
from wacli.core.models import Contact

GROUP_FALLBACK = "Group"

_MEMBER_LIST_SEPARATORS = (",", ";")
_NUMERIC_CHARS = frozenset(string.digits + string.punctuation + string.whitespace)


def looks_like_member_list(name: str | None) -> bool:
    """True for participant dumps mistakenly attributed to one id.

    A guard against an upstream data-quality bug, not an exhaustive check.
    """
    return bool(name) and any(sep in name for sep in _MEMBER_LIST_SEPARATORS)


def _is_numeric_label(name: str) -> bool:
    return all(ch in _NUMERIC_CHARS for ch in name)


def _has_identifier_fragment(name: str, jid: str) -> bool:
    local = wacli.core.identity.local_part(jid)
    return "@" in name or (bool(local) and local in name)


def _usable(name: str) -> bool:
    return bool(name.strip()) and not looks_like_member_list(name)


def lookup_contact(jid: str, contacts: Mapping[str, Contact]) -> Contact | None:
    """Find a contact by canonical id, falling back to the id as given."""
    return contacts.get(wacli.core.identity.normalize(jid)) or contacts.get(jid)


def resolve_name(
    jid: str,
    contacts: Mapping[str, Contact],
    overrides: Mapping[str, str],
    chat_name: str | None = None,
    group_subject: str | None = None,
) -> str:
    canonical = wacli.core.identity.normalize(jid)

    override = overrides.get(canonical)
    if override:
        return override

    contact = lookup_contact(jid, contacts)
    book_name = contact.name if contact is not None else None
    if book_name and _usable(book_name):
        return book_name

    hint = chat_name or ""
    if wacli.core.identity.is_group_id(canonical):
        subject = group_subject or ""
        if _usable(subject):
            return subject
        if _usable(hint) and not _has_identifier_fragment(hint, canonical):
            return hint
        return GROUP_FALLBACK

    notify = contact.notify if contact is not None else None
    if notify and notify.strip():
        return notify

    if _usable(hint) and not _is_numeric_label(hint):
        return hint

    return wacli.core.identity.local_part(canonical)
