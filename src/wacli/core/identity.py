"""Identifier canonicalization.

Peers show up under more than one spelling: the legacy ``@c.us`` domain and
per-device ``<user>:<device>@s.whatsapp.net`` forms both refer to the same
account as ``<user>@s.whatsapp.net``. Every store key and every name lookup
goes through normalize() so one peer never splits into two entries.

// [LAW:single-enforcer] This module is the only place identifier spellings are reconciled.

This module is STABLE: pure functions, safe for `from` imports.
"""

USER_DOMAIN = "s.whatsapp.net"
GROUP_DOMAIN = "g.us"
LEGACY_USER_DOMAIN = "c.us"

# [LAW:one-source-of-truth] Domain aliases folded onto the canonical user domain.
_DOMAIN_ALIASES: dict[str, str] = {
    LEGACY_USER_DOMAIN: USER_DOMAIN,
}


def normalize(jid: str) -> str:
    """Return the canonical storage form of an identifier.

    Unknown shapes pass through unchanged. Idempotent.
    """
    if not isinstance(jid, str) or "@" not in jid:
        return jid
    local, _, domain = jid.rpartition("@")
    domain = _DOMAIN_ALIASES.get(domain, domain)
    if domain == USER_DOMAIN:
        # Device suffix: "<user>:<device>"
        local = local.split(":", 1)[0]
    return f"{local}@{domain}"


def is_group_id(jid: str) -> bool:
    return isinstance(jid, str) and jid.endswith("@" + GROUP_DOMAIN)


def local_part(jid: str) -> str:
    """Portion of the normalized identifier before the domain separator."""
    canonical = normalize(jid)
    if not isinstance(canonical, str):
        return ""
    return canonical.split("@", 1)[0]


def to_identifier(raw: str) -> str:
    """Expand user-typed input into a canonical identifier.

    A bare number (``15551234`` or ``+1 555-1234``) becomes an individual id;
    anything already carrying a domain is normalized as-is.
    """
    text = (raw or "").strip()
    if "@" in text:
        return normalize(text)
    digits = "".join(ch for ch in text if ch.isdigit())
    return f"{digits or text}@{USER_DOMAIN}"
