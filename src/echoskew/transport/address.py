"""Host/port parsing for client targets and listen addresses."""

from __future__ import annotations

from typing import Tuple
from urllib.parse import urlparse

DEFAULT_PORT = 8079


def parse_address(target: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """Accepts 'host', 'host:port', '[v6]:port' or a URL; returns (host, port)."""
    target = target.strip()
    if not target:
        raise ValueError("empty address")
    if "://" in target:
        u = urlparse(target)
        return u.hostname or "127.0.0.1", u.port or default_port
    if target.startswith("["):
        host, sep, rest = target[1:].partition("]")
        if not sep:
            raise ValueError(f"unterminated IPv6 address in {target!r}")
        if rest.startswith(":") and rest[1:]:
            return host, _port(rest[1:], target)
        return host, default_port
    if target.count(":") > 1:
        # bare IPv6 literal, no port
        return target, default_port
    host, sep, port_str = target.partition(":")
    if not sep or not port_str:
        return host or "127.0.0.1", default_port
    return host or "127.0.0.1", _port(port_str, target)


def normalize_port(port: str) -> str:
    """'8079' -> ':8079'; anything that already has a host part is unchanged."""
    if ":" in port:
        return port
    return ":" + port


def split_listen_address(address: str) -> Tuple[str, int]:
    """':8079' -> ('0.0.0.0', 8079); 'host:port' -> ('host', port)."""
    normalized = normalize_port(address.strip())
    host, _, port_str = normalized.rpartition(":")
    host = host.strip("[]") or "0.0.0.0"
    return host, _port(port_str, address)


def _port(value: str, original: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise ValueError(f"invalid port in {original!r}") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range in {original!r}")
    return port
