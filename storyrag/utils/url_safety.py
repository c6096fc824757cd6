"""Coarse SSRF guard for URLs fetched during ingestion.

Only ``http`` and ``https`` URLs are allowed, and hosts that are
``localhost`` (or a ``*.localhost`` name) or an IP literal in a loopback,
private, link-local, unspecified, reserved or multicast range are refused.
Numeric hosts in the legacy IPv4 shorthands (``2130706433``, ``0x7f000001``,
``127.1``, octal labels) are read the way the resolver reads them before the
range check.  Hostnames are not resolved, so DNS rebinding is out of reach
of this check.
"""

import ipaddress
import re
import socket
from urllib.parse import urlsplit

_ALLOWED_SCHEMES = frozenset({"http", "https"})

_NUMERIC_LABEL_RE = re.compile(r"0x[0-9a-f]*|[0-9]+")


def _parse_ip_literal(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Return the address *host* denotes, or ``None`` for a regular hostname.

    Raises ``ValueError`` for numeric hosts the resolver would not accept.
    """
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass

    if not all(_NUMERIC_LABEL_RE.fullmatch(label) for label in host.split(".")):
        return None
    try:
        packed = socket.inet_aton(host)
    except OSError as exc:
        raise ValueError(f"Unparseable numeric host: {host}") from exc
    return ipaddress.IPv4Address(packed)


def is_safe_public_http_url(raw: str) -> bool:
    """Return ``True`` if *raw* is an http(s) URL pointing at a public host."""
    try:
        parts = urlsplit(raw.strip())
        host = parts.hostname
    except ValueError:
        return False

    if parts.scheme.lower() not in _ALLOWED_SCHEMES or not host:
        return False

    host = host.lower().rstrip(".")
    if host == "localhost" or host.endswith(".localhost"):
        return False

    try:
        address = _parse_ip_literal(host)
    except ValueError:
        return False
    if address is None:
        return True

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
        or address.is_multicast
    )
