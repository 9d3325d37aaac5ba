"""Pairing payload parser.

A Desktop advertises itself with a QR code holding a URI such as::

    zelara://pair?ip=192.168.1.100&ip=10.42.0.1&port=8765&token=abc123

Each ``ip`` value is one candidate interface, tried in order.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

from zelara.errors import PairingError

_HOSTNAME = re.compile(r"^(?=.{1,253}$)[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$")


@dataclass(frozen=True)
class PairingInfo:
    """Typed result of a pairing payload."""

    addresses: tuple[str, ...]
    port: int
    token: str

    @property
    def primary_address(self) -> str:
        return self.addresses[0]


def _valid_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return bool(_HOSTNAME.match(value))
    return True


def _addresses(values: list[str], problems: list[str]) -> tuple[str, ...]:
    if not values:
        problems.append("missing ip")
        return ()
    seen: list[str] = []
    for raw in values:
        value = raw.strip()
        if not value:
            problems.append("blank ip")
        elif not _valid_address(value):
            problems.append(f"invalid ip: {value!r}")
        elif value not in seen:
            seen.append(value)
    return tuple(seen)


def _port(values: list[str], problems: list[str]) -> int:
    if not values or not values[0].strip():
        problems.append("missing port")
        return 0
    raw = values[0].strip()
    if not raw.isdigit():
        problems.append(f"port is not a number: {raw!r}")
        return 0
    port = int(raw)
    if not 1 <= port <= 65535:
        problems.append(f"port out of range: {port}")
    return port


def parse_pairing_uri(raw: str | bytes, *, scheme: str = "zelara") -> PairingInfo:
    """Parse a pairing payload, reporting every missing or malformed field at once."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PairingError([f"payload is not UTF-8: {exc.reason}"]) from exc

    parts = urlsplit(raw.strip())
    problems: list[str] = []
    if parts.scheme.lower() != scheme.lower():
        problems.append(f"expected scheme {scheme!r}, got {parts.scheme!r}")
    if parts.netloc.lower() != "pair":
        problems.append(f"expected host 'pair', got {parts.netloc!r}")

    query = parse_qs(parts.query, keep_blank_values=True)
    addresses = _addresses(query.get("ip", []), problems)
    port = _port(query.get("port", []), problems)
    token_values = query.get("token", [])
    token = token_values[0].strip() if token_values else ""
    if not token:
        problems.append("missing token")

    if problems:
        raise PairingError(problems)
    return PairingInfo(addresses=addresses, port=port, token=token)
