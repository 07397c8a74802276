"""Atomic events and a bounded event bus."""

from __future__ import annotations

import asyncio
import json
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

_U32_MAX = 0xFFFFFFFF
_U64_MAX = 0xFFFFFFFFFFFFFFFF


class EventType(str, Enum):
    """The eight atomic event domains, named in dotted snake case."""

    COMPUTE_UTIL = "compute.util"
    COMPUTE_MEM = "compute.mem"
    TRANSPORT_BW = "transport.bw"
    TRANSPORT_DROP = "transport.drop"
    STORAGE_IOPS = "storage.iops"
    STORAGE_QDEPTH = "storage.qdepth"
    PROCESS_STATE = "process.state"
    ERROR_HW = "error.hw"
    ERROR_NET = "error.net"
    TOPO_LINK_DOWN = "topo.link_down"
    INTENT_RUN = "intent.run"
    ACTION_EXEC = "action.exec"

    def __str__(self) -> str:
        return self.value


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _require_int(data: dict[str, Any], key: str, upper: int, optional: bool) -> int | None:
    value = data.get(key)
    if value is None:
        if optional:
            return None
        raise ValueError(f"missing field `{key}`")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field `{key}` must be an integer")
    if not 0 <= value <= upper:
        raise ValueError(f"field `{key}` out of range: {value}")
    return value


def _require_str(data: dict[str, Any], key: str, optional: bool) -> str | None:
    value = data.get(key)
    if value is None:
        if optional:
            return None
        raise ValueError(f"missing field `{key}`")
    if not isinstance(value, str):
        raise ValueError(f"field `{key}` must be a string")
    return value


@dataclass
class Event:
    """A single observation from a probe.

    ``node_id`` is the namespace the hub uses to keep nodes of different
    machines apart; agents fill it in when they push events.
    """

    ts: int
    event_type: EventType
    entity_id: str
    value: str
    job_id: str | None = None
    pid: int | None = None
    node_id: str | None = None

    @classmethod
    def create(
        cls,
        event_type: EventType,
        entity_id: str,
        value: str,
        job_id: str | None = None,
        pid: int | None = None,
    ) -> Event:
        """Build an event stamped with the current time in milliseconds."""
        return cls(
            ts=_now_ms(),
            event_type=event_type,
            entity_id=entity_id,
            value=value,
            job_id=job_id,
            pid=pid,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the wire representation; ``node_id`` is left out when unset."""
        data: dict[str, Any] = {
            "ts": self.ts,
            "event_type": self.event_type.value,
            "entity_id": self.entity_id,
            "job_id": self.job_id,
            "pid": self.pid,
            "value": self.value,
        }
        if self.node_id is not None:
            data["node_id"] = self.node_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        """Parse the wire representation, raising ValueError on bad input."""
        if not isinstance(data, dict):
            raise ValueError("event must be a JSON object")
        raw_type = data.get("event_type")
        if raw_type is None:
            raise ValueError("missing field `event_type`")
        try:
            event_type = EventType(raw_type)
        except ValueError:
            raise ValueError(f"unknown event type: {raw_type!r}") from None
        return cls(
            ts=_require_int(data, "ts", _U64_MAX, optional=False),
            event_type=event_type,
            entity_id=_require_str(data, "entity_id", optional=False),
            value=_require_str(data, "value", optional=False),
            job_id=_require_str(data, "job_id", optional=True),
            pid=_require_int(data, "pid", _U32_MAX, optional=True),
            node_id=_require_str(data, "node_id", optional=True),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str) -> Event:
        return cls.from_dict(json.loads(text))


class EventBus:
    """A bounded FIFO channel; senders wait while it is full."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("event bus capacity must be positive")
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=capacity)

    async def send(self, event: Event) -> None:
        await self._queue.put(event)

    async def receive(self) -> Event:
        return await self._queue.get()


async def dummy_probe(bus: EventBus, rng: random.Random | None = None) -> None:
    """Push one to three random events every second, forever."""
    rng = rng or random.Random()
    pid_counter = 1000
    while True:
        for _ in range(rng.randint(1, 3)):
            if rng.random() < 0.5:
                event = Event.create(
                    EventType.COMPUTE_UTIL,
                    f"gpu-{rng.randint(0, 7):02d}",
                    str(rng.randint(0, 100)),
                    None,
                    pid_counter + rng.randint(0, 10),
                )
            else:
                pid_counter += 1
                event = Event.create(
                    EventType.PROCESS_STATE,
                    f"proc-{pid_counter}",
                    "start",
                    f"job-{rng.randint(1000, 9999)}",
                    pid_counter,
                )
            await bus.send(event)
        await asyncio.sleep(1)