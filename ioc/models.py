"""
ioc/models.py -- Domain types and value-format rules for indicators of compromise.

The three IOC kinds (SHA256 hash, URL, IP:port) share one record shape and
differ only in how ioc_value is validated. The format rules live here, not in
the API layer, because both the REST routes (via api/models.py validators)
and the CSV importer (ioc/ingest.py) must apply exactly the same checks.

Dataclasses are pure data containers; persistence lives in ioc/store.py.

Layer rule: no imports from api/ or auth/.
"""

import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

SHA256_PATTERN = re.compile(r"^[a-f0-9]{64}$")

CONFIDENCE_MIN = 0
CONFIDENCE_MAX = 100

_URL_SCHEMES = frozenset({"http", "https", "ftp"})


class IOCKind(str, Enum):
    """One value per IOC table / REST resource."""

    SHA256 = "sha256"
    URL = "url"
    IPPORT = "ipport"

    @property
    def resource(self) -> str:
        """URL path segment under /api."""
        return _RESOURCES[self]

    @property
    def label(self) -> str:
        """Human-readable name used in error messages and logs."""
        return _LABELS[self]


_RESOURCES = {
    IOCKind.SHA256: "sha256",
    IOCKind.URL: "urls",
    IOCKind.IPPORT: "ipports",
}

_LABELS = {
    IOCKind.SHA256: "SHA256 hash",
    IOCKind.URL: "URL",
    IOCKind.IPPORT: "IP:Port",
}


@dataclass
class IOCRecord:
    """One indicator of compromise.

    Timestamps are ISO 8601 UTC strings (see core/timestamps.py).
    tags is free text, comma-separated, exactly as reported.
    id is None before the record is written to the database.
    """

    ioc_id: str
    ioc_value: str
    threat_type: str
    confidence_level: int
    first_seen: str
    reporter: str
    malware: Optional[str] = None
    malware_printable: Optional[str] = None
    last_seen: Optional[str] = None
    reference: Optional[str] = None
    tags: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class IOCFilter:
    """Optional listing filters. None means "do not filter on this column"."""

    threat_type: Optional[str] = None
    malware: Optional[str] = None  # case-sensitive substring
    reporter: Optional[str] = None
    min_confidence: Optional[int] = None


# ---------------------------------------------------------------------------
# Value-format rules
# ---------------------------------------------------------------------------


def _normalize_sha256(value: str) -> str:
    normalized = value.lower()
    if not SHA256_PATTERN.match(normalized):
        raise ValueError("SHA256 hash must be exactly 64 hexadecimal characters")
    return normalized


def _normalize_url(value: str) -> str:
    if any(ch.isspace() for ch in value):
        raise ValueError("URL must not contain whitespace")
    try:
        parts = urlsplit(value)
        host = parts.hostname
        parts.port  # raises ValueError for a non-numeric or out-of-range port
    except ValueError as exc:
        raise ValueError(f"URL is malformed: {exc}") from exc
    if parts.scheme.lower() not in _URL_SCHEMES or not host:
        raise ValueError("URL must be absolute, with an http, https or ftp scheme and a host")
    return value


def _normalize_ip_port(value: str) -> str:
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise ValueError("IP:Port must have the form a.b.c.d:port")
    try:
        ipaddress.IPv4Address(host)
    except ValueError as exc:
        raise ValueError(f"IP:Port has an invalid IPv4 address: {host[:50]}") from exc
    if not (port.isascii() and port.isdigit()) or len(port) > 5 or not 1 <= int(port) <= 65535:
        raise ValueError("IP:Port port must be a number between 1 and 65535")
    return f"{host}:{int(port)}"


_NORMALIZERS = {
    IOCKind.SHA256: _normalize_sha256,
    IOCKind.URL: _normalize_url,
    IOCKind.IPPORT: _normalize_ip_port,
}


def normalize_ioc_value(kind: IOCKind, value: str) -> str:
    """Validate ioc_value for the given kind and return its canonical form.

    SHA256 hashes are lowercased; IP:port ports lose leading zeros; URLs are
    returned unchanged. Raises ValueError with a client-safe message when the
    value does not match the kind's format.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{kind.label} value is required")
    return _NORMALIZERS[kind](value.strip())


def clamp_confidence(value: int) -> int:
    """Force a confidence score into [0, 100]. Used by the bulk importer only."""
    return max(CONFIDENCE_MIN, min(CONFIDENCE_MAX, value))
