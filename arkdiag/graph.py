"""Real-time causal graph built from the event stream."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum

from arkdiag.event import Event, EventType

logger = logging.getLogger(__name__)

_DEFAULT_ERROR_WINDOW_MS = 5 * 60 * 1000
_PROCESS_WINDOW_MS = 10 * 60 * 1000
_NETWORK_PID_PREFIX = "network-pid-"
_UNKNOWN_ERROR = "未知错误"
_U32_MAX = 0xFFFFFFFF


class EdgeType(str, Enum):
    """Derived relations between nodes."""

    CONSUMES = "consumes"
    WAITS_ON = "waits_on"
    BLOCKED_BY = "blocked_by"


class NodeType(str, Enum):
    PROCESS = "process"
    RESOURCE = "resource"
    ERROR = "error"


@dataclass(frozen=True)
class Edge:
    edge_type: EdgeType
    source: str
    target: str
    ts: int


@dataclass
class Node:
    id: str
    node_type: NodeType
    last_update: int
    metadata: dict[str, str] = field(default_factory=dict)


def _clone(node: Node) -> Node:
    return Node(node.id, node.node_type, node.last_update, dict(node.metadata))


def _parse_u32(text: str) -> int | None:
    digits = text[1:] if text.startswith("+") else text
    if not digits or not digits.isascii() or not digits.isdigit():
        return None
    value = int(digits)
    return value if value <= _U32_MAX else None


def _parse_f64(text: str) -> float | None:
    if not text or text != text.strip() or "_" in text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


class StateGraph:
    """Process, resource and error nodes linked by derived edges."""

    def __init__(self, error_window_ms: int = _DEFAULT_ERROR_WINDOW_MS) -> None:
        self.error_window_ms = error_window_ms
        self._nodes: dict[str, Node] = {}
        self._edges: list[Edge] = []
        self._lock = threading.RLock()

    @staticmethod
    def _namespaced(event: Event, node_id: str) -> str:
        if event.node_id is not None:
            return f"{event.node_id}::{node_id}"
        return node_id

    def _ensure_node(
        self,
        node_id: str,
        node_type: NodeType,
        ts: int,
        metadata: dict[str, str] | None = None,
    ) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            node = Node(node_id, node_type, ts, dict(metadata or {}))
            self._nodes[node_id] = node
        return node

    def _has_edge(self, edge_type: EdgeType, source: str, target: str) -> bool:
        return any(
            e.edge_type is edge_type and e.source == source and e.target == target
            for e in self._edges
        )

    def _add_edge_once(self, edge_type: EdgeType, source: str, target: str, ts: int) -> bool:
        if self._has_edge(edge_type, source, target):
            return False
        self._edges.append(Edge(edge_type, source, target, ts))
        return True

    def process_event(self, event: Event) -> None:
        """Fold one event into the graph, then expire stale nodes."""
        kind = event.event_type
        with self._lock:
            if kind is EventType.PROCESS_STATE:
                self._handle_process_state(event)
            elif kind in (EventType.COMPUTE_UTIL, EventType.COMPUTE_MEM):
                self._handle_compute(event)
            elif kind in (
                EventType.TRANSPORT_BW,
                EventType.TRANSPORT_DROP,
                EventType.STORAGE_IOPS,
                EventType.STORAGE_QDEPTH,
            ):
                self._handle_transport(event)
            elif kind in (EventType.ERROR_HW, EventType.ERROR_NET, EventType.TOPO_LINK_DOWN):
                self._handle_error(event)
            self._cleanup(event.ts)

    def _handle_process_state(self, event: Event) -> None:
        if event.pid is None:
            return
        pid_id = self._namespaced(event, f"pid-{event.pid}")
        if event.value == "start":
            metadata = {}
            if event.job_id is not None:
                metadata["job_id"] = event.job_id
            metadata["state"] = "running"
            self._nodes[pid_id] = Node(pid_id, NodeType.PROCESS, event.ts, metadata)
        elif event.value in ("exit", "zombie"):
            node = self._nodes.get(pid_id)
            if node is not None:
                node.metadata["state"] = event.value
                node.last_update = event.ts

    def _handle_compute(self, event: Event) -> None:
        resource_id = self._namespaced(event, event.entity_id)
        resource = self._ensure_node(resource_id, NodeType.RESOURCE, event.ts)
        resource.metadata["util"] = event.value
        resource.last_update = event.ts

        if event.pid is None:
            return
        pid_id = self._namespaced(event, f"pid-{event.pid}")
        self._ensure_node(pid_id, NodeType.PROCESS, event.ts)
        # The duplicate check looks at the bare entity id, not the namespaced one.
        if not self._has_edge(EdgeType.CONSUMES, pid_id, event.entity_id):
            self._edges.append(Edge(EdgeType.CONSUMES, pid_id, resource_id, event.ts))

    def _handle_transport(self, event: Event) -> None:
        if event.entity_id.startswith(_NETWORK_PID_PREFIX):
            base = "network"
        else:
            base = event.entity_id
        resource_id = self._namespaced(event, base)
        resource = self._ensure_node(resource_id, NodeType.RESOURCE, event.ts)
        key = {EventType.TRANSPORT_BW: "bw", EventType.TRANSPORT_DROP: "drop"}.get(
            event.event_type, "unknown"
        )
        resource.metadata[key] = event.value
        resource.last_update = event.ts

        if event.event_type is EventType.TRANSPORT_DROP:
            if event.pid is not None:
                pid = event.pid
            elif event.entity_id.startswith(_NETWORK_PID_PREFIX):
                pid = _parse_u32(event.entity_id[len(_NETWORK_PID_PREFIX):]) or 0
            else:
                pid = 0
            if pid > 0:
                pid_id = self._namespaced(event, f"pid-{pid}")
                self._ensure_node(pid_id, NodeType.PROCESS, event.ts, {"state": "running"})
                if self._add_edge_once(EdgeType.WAITS_ON, pid_id, resource_id, event.ts):
                    logger.info(
                        "linked %s waits_on %s (transport.drop)", pid_id, resource_id
                    )

        if event.event_type is EventType.TRANSPORT_BW and event.pid is not None:
            bandwidth = _parse_f64(event.value)
            if bandwidth is None:
                bandwidth = 1000.0
            if "IO_WAIT" in event.value or bandwidth < 1.0:
                pid_id = self._namespaced(event, f"pid-{event.pid}")
                self._ensure_node(pid_id, NodeType.PROCESS, event.ts)
                self._add_edge_once(EdgeType.WAITS_ON, pid_id, resource_id, event.ts)

    def _handle_error(self, event: Event) -> None:
        error_id = self._namespaced(event, f"error-{event.entity_id}")
        self._ensure_node(error_id, NodeType.ERROR, event.ts, {"error_type": event.value})

        resource_id = self._namespaced(event, event.entity_id)
        affected = [
            e.source
            for e in self._edges
            if e.edge_type is EdgeType.CONSUMES and e.target == resource_id
        ]
        for pid_id in affected:
            self._add_edge_once(EdgeType.BLOCKED_BY, pid_id, error_id, event.ts)

    def _cleanup(self, current_ts: int) -> None:
        cutoff = max(0, current_ts - self.error_window_ms)
        expired = {
            node_id
            for node_id, node in self._nodes.items()
            if node.node_type is NodeType.ERROR and node.last_update < cutoff
        }
        for node_id in expired:
            del self._nodes[node_id]
        self._edges = [
            e
            for e in self._edges
            if not (e.edge_type is EdgeType.BLOCKED_BY and e.target in expired)
        ]

        # Running processes are kept however long they stay quiet.
        process_cutoff = max(0, current_ts - _PROCESS_WINDOW_MS)
        dead = set()
        for node_id, node in self._nodes.items():
            if node.node_type is not NodeType.PROCESS:
                continue
            state = node.metadata.get("state")
            if state in ("exit", "zombie") or (
                node.last_update < process_cutoff and state != "running"
            ):
                dead.add(node_id)
        for node_id in dead:
            del self._nodes[node_id]
        self._edges = [
            e for e in self._edges if e.source not in dead and e.target not in dead
        ]

    def active_processes(self) -> list[Node]:
        """Process nodes that have not exited or become zombies."""
        with self._lock:
            return [
                _clone(node)
                for node in self._nodes.values()
                if node.node_type is NodeType.PROCESS
                and node.metadata.get("state") not in ("exit", "zombie")
            ]

    def process_resources(self, pid: int) -> list[str]:
        """Resources the un-namespaced process ``pid`` consumes."""
        pid_id = f"pid-{pid}"
        with self._lock:
            return [
                e.target
                for e in self._edges
                if e.edge_type is EdgeType.CONSUMES and e.source == pid_id
            ]

    def find_root_cause(self, pid: int) -> list[str]:
        return self.find_root_cause_by_id(f"pid-{pid}")

    def find_root_cause_by_id(self, node_id: str) -> list[str]:
        """Walk blocked-by edges back from ``node_id`` and collect causes."""
        with self._lock:
            visited: set[str] = set()
            causes: list[str] = []
            self._walk_back(node_id, visited, causes)
            return causes

    def _walk_back(self, node_id: str, visited: set[str], causes: list[str]) -> None:
        if node_id in visited:
            return
        visited.add(node_id)
        for edge in self._edges:
            if edge.edge_type is EdgeType.BLOCKED_BY and edge.source == node_id:
                node = self._nodes.get(edge.target)
                if node is None:
                    continue
                if node.node_type is NodeType.ERROR:
                    error_type = node.metadata.get("error_type", _UNKNOWN_ERROR)
                    causes.append(f"{edge.target}: {error_type}")
                self._walk_back(edge.target, visited, causes)
        for edge in self._edges:
            if edge.edge_type is EdgeType.WAITS_ON and edge.source == node_id:
                causes.append(f"等待资源: {edge.target}")

    def all_edges(self) -> list[Edge]:
        with self._lock:
            return list(self._edges)

    def all_nodes(self) -> dict[str, Node]:
        with self._lock:
            return {node_id: _clone(node) for node_id, node in self._nodes.items()}