"""Decoding network probe records and rendering them as Ark events."""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass

# Native little-endian C layout of the kernel-side record, padding included.
_LAYOUT = struct.Struct("<IB3xI4xQIIHH4x")
EVENT_SIZE = _LAYOUT.size

TRANSPORT_DROP = 1
OUTPUT_FORMATS = ("jsonl", "debug")


def _from_be16(value: int) -> int:
    """A port stored in network byte order, as read on a little-endian host."""
    return ((value & 0xFF) << 8) | (value >> 8)


@dataclass(frozen=True)
class SocketTuple:
    """IPv4 addresses and ports of a socket, as the kernel stores them."""

    src_ip: int = 0
    dst_ip: int = 0
    src_port: int = 0
    dst_port: int = 0

    @property
    def is_known(self) -> bool:
        return self.src_ip != 0 or self.dst_ip != 0


@dataclass(frozen=True)
class NetworkEvent:
    """One TCP retransmission seen by the probe."""

    pid: int
    event_type: int = TRANSPORT_DROP
    retransmit_count: int = 1
    timestamp: int = 0
    socket_tuple: SocketTuple = SocketTuple()

    @classmethod
    def from_bytes(cls, data: bytes) -> NetworkEvent:
        """Decode a raw record; trailing bytes are ignored."""
        if len(data) < EVENT_SIZE:
            raise ValueError("缓冲区太小")
        pid, kind, count, ts, src_ip, dst_ip, src_port, dst_port = _LAYOUT.unpack_from(data)
        return cls(
            pid=pid,
            event_type=kind,
            retransmit_count=count,
            timestamp=ts,
            socket_tuple=SocketTuple(src_ip, dst_ip, src_port, dst_port),
        )

    def to_bytes(self) -> bytes:
        """Encode as the raw record the probe emits."""
        sock = self.socket_tuple
        try:
            return _LAYOUT.pack(
                self.pid,
                self.event_type,
                self.retransmit_count,
                self.timestamp,
                sock.src_ip,
                sock.dst_ip,
                sock.src_port,
                sock.dst_port,
            )
        except struct.error as exc:
            raise ValueError(f"field out of range: {exc}") from exc


def u32_to_ip_string(ip: int) -> str:
    """Dotted-quad text of an IPv4 address held in a 32-bit integer."""
    if ip == 0:
        return "0.0.0.0"
    return ".".join(str((ip >> shift) & 0xFF) for shift in (24, 16, 8, 0))


def event_entity_id(event: NetworkEvent) -> str:
    """The entity id: the socket's endpoints when known, else the process."""
    sock = event.socket_tuple
    if sock.is_known:
        return (
            f"network-{u32_to_ip_string(sock.src_ip)}-{u32_to_ip_string(sock.dst_ip)}"
            f"-{_from_be16(sock.src_port)}-{_from_be16(sock.dst_port)}"
        )
    return f"network-pid-{event.pid}"


def event_to_json(event: NetworkEvent) -> str:
    """The event as one line of Ark event JSON, timestamp in milliseconds."""
    record = {
        "ts": event.timestamp // 1_000_000,
        "event_type": "transport.drop",
        "entity_id": event_entity_id(event),
        "pid": event.pid,
        "value": str(event.retransmit_count),
    }
    return json.dumps(record, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def format_event(event: NetworkEvent, output_format: str = "jsonl") -> str:
    """Render an event as ``jsonl`` or human-readable ``debug`` text."""
    if output_format == "jsonl":
        return event_to_json(event)
    if output_format == "debug":
        sock = event.socket_tuple
        if sock.is_known:
            return (
                f"TCP Retransmit: pid={event.pid}, "
                f"socket={u32_to_ip_string(sock.src_ip)}:{_from_be16(sock.src_port)}"
                f"->{u32_to_ip_string(sock.dst_ip)}:{_from_be16(sock.dst_port)}, "
                f"count={event.retransmit_count}, ts={event.timestamp}"
            )
        return (
            f"TCP Retransmit: pid={event.pid}, count={event.retransmit_count}, "
            f"ts={event.timestamp} (第一版：无 socket 信息)"
        )
    raise ValueError(f"未知的输出格式: {output_format}")