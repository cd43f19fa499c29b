"""
Data models for the sync service.

This module defines the proxy hosts observed in Nginx Proxy Manager, the
Cloudflare zones and DNS records they map to, and the diff between two
host snapshots.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

import idna


def normalize_hostname(hostname: str) -> str:
    """
    Convert a hostname to the form Cloudflare reports record names in.

    Trims whitespace, lower-cases, and IDNA-encodes international names.
    Names that cannot be IDNA-encoded are returned lower-cased unchanged.
    """
    name = hostname.strip().lower().rstrip(".")
    if any(ord(c) > 127 for c in name):
        try:
            return idna.encode(name, uts46=True).decode("ascii")
        except idna.IDNAError:
            return name
    return name


def normalize_domain_names(raw: Union[str, list, None]) -> list[str]:
    """Normalize NPM's domain_names (list or comma-delimited string) to a list."""
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    names = []
    for entry in raw:
        name = normalize_hostname(str(entry))
        if name:
            names.append(name)
    return names


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None


def same_instant(first: str, second: str) -> bool:
    """Compare two NPM timestamps by instant, falling back to string equality."""
    if first == second:
        return True
    a, b = _parse_timestamp(first), _parse_timestamp(second)
    if a is None or b is None:
        return False
    # Naive and aware datetimes cannot be compared
    if (a.tzinfo is None) != (b.tzinfo is None):
        return a.replace(tzinfo=None) == b.replace(tzinfo=None)
    return a == b


@dataclass
class ProxyHost:
    """A reverse-proxy host as reported by Nginx Proxy Manager."""

    id: int
    domain_names: list[str]
    forward_host: str
    forward_port: int
    modified_on: str
    created_on: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ProxyHost":
        """Build a ProxyHost from an NPM API object."""
        return cls(
            id=int(data["id"]),
            domain_names=normalize_domain_names(data.get("domain_names")),
            forward_host=str(data.get("forward_host", "")),
            forward_port=int(data.get("forward_port") or 0),
            modified_on=str(data.get("modified_on", "")),
            created_on=data.get("created_on"),
        )

    def differs_from(self, previous: "ProxyHost") -> bool:
        """True if any tracked field changed since the previous observation."""
        return (
            not same_instant(self.modified_on, previous.modified_on)
            or self.forward_host != previous.forward_host
            or self.forward_port != previous.forward_port
            or self.domain_names != previous.domain_names
        )


@dataclass
class Zone:
    """A Cloudflare zone."""

    id: str
    name: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Zone":
        return cls(id=str(data["id"]), name=normalize_hostname(str(data["name"])))


@dataclass
class DNSRecord:
    """A Cloudflare DNS record."""

    id: str
    name: str
    type: str
    content: str
    proxied: bool = False
    ttl: int = 1  # 1 = automatic

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "DNSRecord":
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            type=str(data.get("type", "")),
            content=str(data.get("content", "")),
            proxied=bool(data.get("proxied", False)),
            ttl=int(data.get("ttl") or 1),
        )

    def to_payload(self) -> dict[str, Any]:
        """Request body for create/update calls (the id travels in the URL)."""
        return {
            "name": self.name,
            "type": self.type,
            "content": self.content,
            "proxied": self.proxied,
            "ttl": self.ttl,
        }


@dataclass
class HostChanges:
    """Result of diffing the current host list against the previous snapshot."""

    current: list[ProxyHost]
    changed: list[ProxyHost] = field(default_factory=list)
    deleted: list[ProxyHost] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.changed or self.deleted)
