"""
sniwatch/stream/events.py

Turns one raw SNI log line into a structured ConnectionEvent.

Accepted shape (one event per line):

    2025/10/13 22:41:12.466126 [INFO] SNI TCP: assets.alicdn.com 192.168.1.100:38894 -> 92.123.206.67:443
    2025/10/13 22:41:12.466126 [INFO] SNI UDP TARGET: rr1.googlevideo.com 10.0.0.5:51820 -> [2a00:1450::1]:443

Anything else parses to None. Rejected lines stay in the raw log window and
are simply absent from parsed views.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

_LINE_RE = re.compile(
    r"^(\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2}\.\d+)\s+\[INFO\]\s+SNI\s+(TCP|UDP)(?:\s+TARGET)?:"
    r"\s+(\S+)\s+(\S+)\s+->\s+(\S+)$"
)

TARGET_MARKER = "TARGET"


class Protocol(str, Enum):
    TCP = "TCP"
    UDP = "UDP"


@dataclass(frozen=True)
class ConnectionEvent:
    timestamp: str
    protocol: Protocol
    is_target: bool
    domain: str
    source: str
    destination: str
    raw: str

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "protocol": self.protocol.value,
            "is_target": self.is_target,
            "domain": self.domain,
            "source": self.source,
            "destination": self.destination,
        }


def parse_line(line: str) -> Optional[ConnectionEvent]:
    """Parse a raw line. Pure: the same input always gives the same result."""
    if not isinstance(line, str):
        return None
    match = _LINE_RE.match(line)
    if not match:
        return None

    timestamp, protocol, domain, source, destination = match.groups()
    return ConnectionEvent(
        timestamp=timestamp,
        protocol=Protocol(protocol),
        is_target=TARGET_MARKER in line,
        domain=domain,
        source=source,
        destination=destination,
        raw=line,
    )


def parse_lines(lines: Iterable[str]) -> List[ConnectionEvent]:
    """Parse a window of lines, dropping rejects and keeping order."""
    events = []
    for line in lines:
        event = parse_line(line)
        if event is not None:
            events.append(event)
    return events


def endpoint_host(endpoint: str) -> str:
    """
    Strip the port from an `ip:port` endpoint.

    "1.2.3.4:443" -> "1.2.3.4", "[2001:db8::1]:443" -> "2001:db8::1".
    A bare IPv6 address (more than one colon, no brackets) is returned as-is.
    """
    value = endpoint.strip()
    if value.startswith("["):
        end = value.find("]")
        return value[1:end] if end != -1 else value[1:]
    if value.count(":") == 1:
        return value.split(":", 1)[0]
    return value


def source_host(event: ConnectionEvent) -> str:
    return endpoint_host(event.source)


def destination_host(event: ConnectionEvent) -> str:
    return endpoint_host(event.destination)


def novelty_keys(event: ConnectionEvent) -> tuple:
    """Keys that identify what an event puts on screen: its host and its IP."""
    return ("host:" + event.domain, "ip:" + destination_host(event))


def is_novel(event: Optional[ConnectionEvent], seen) -> bool:
    """
    True when a parsed event introduces something the operator has not been
    shown yet: it is a TARGET hit, or its domain or destination IP is new.

    `seen` is any container of novelty keys; it is not modified here.
    """
    if event is None:
        return False
    if event.is_target:
        return True
    return any(key not in seen for key in novelty_keys(event))
