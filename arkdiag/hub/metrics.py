"""Hub metrics kept in memory and rendered in the Prometheus text format."""

from __future__ import annotations

import math
import threading
from collections import Counter
from collections.abc import Sequence
from typing import Any

CONTENT_TYPE = "text/plain; version=0.0.4"

_QUERY_BUCKETS = (0.001, 0.01, 0.1, 1.0, 5.0, 10.0)


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _label_text(pairs: Sequence[tuple[str, str]]) -> str:
    if not pairs:
        return ""
    inner = ",".join(f'{name}="{_escape_label(value)}"' for name, value in pairs)
    return "{" + inner + "}"


class _MetricVec:
    """A metric family with one child per combination of label values."""

    kind = "untyped"

    def __init__(self, name: str, documentation: str, label_names: Sequence[str]) -> None:
        self.name = name
        self.documentation = documentation
        self.label_names = tuple(label_names)
        self._children: dict[tuple[str, ...], Any] = {}
        self._lock = threading.Lock()

    def _key(self, values: Sequence[str]) -> tuple[str, ...]:
        if len(values) != len(self.label_names):
            raise ValueError(
                f"{self.name}: expected {len(self.label_names)} label values, got {len(values)}"
            )
        return tuple(str(v) for v in values)

    def _pairs(self, key: tuple[str, ...]) -> list[tuple[str, str]]:
        return list(zip(self.label_names, key))

    def _samples(self, key: tuple[str, ...], child: Any) -> list[str]:
        return [f"{self.name}{_label_text(self._pairs(key))} {_format_value(child)}"]

    def render(self) -> list[str]:
        with self._lock:
            children = sorted(self._children.items())
        if not children:
            return []
        lines = [
            f"# HELP {self.name} {_escape_help(self.documentation)}",
            f"# TYPE {self.name} {self.kind}",
        ]
        for key, child in children:
            lines.extend(self._samples(key, child))
        return lines


class _GaugeVec(_MetricVec):
    kind = "gauge"

    def set(self, values: Sequence[str], amount: float) -> None:
        key = self._key(values)
        with self._lock:
            self._children[key] = float(amount)


class _CounterVec(_MetricVec):
    kind = "counter"

    def inc(self, values: Sequence[str], amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counters can only increase")
        key = self._key(values)
        with self._lock:
            self._children[key] = self._children.get(key, 0.0) + amount


class _Histogram:
    __slots__ = ("bucket_counts", "total", "count")

    def __init__(self, size: int) -> None:
        self.bucket_counts = [0] * size
        self.total = 0.0
        self.count = 0


class _HistogramVec(_MetricVec):
    kind = "histogram"

    def __init__(
        self,
        name: str,
        documentation: str,
        label_names: Sequence[str],
        buckets: Sequence[float],
    ) -> None:
        super().__init__(name, documentation, label_names)
        self.buckets = tuple(sorted(buckets))

    def observe(self, values: Sequence[str], amount: float) -> None:
        key = self._key(values)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = self._children[key] = _Histogram(len(self.buckets))
            for index, bound in enumerate(self.buckets):
                if amount <= bound:
                    child.bucket_counts[index] += 1
                    break
            child.total += amount
            child.count += 1

    def _samples(self, key: tuple[str, ...], child: _Histogram) -> list[str]:
        pairs = self._pairs(key)
        lines = []
        cumulative = 0
        for bound, hits in zip(self.buckets, child.bucket_counts):
            cumulative += hits
            labels = _label_text(pairs + [("le", _format_value(bound))])
            lines.append(f"{self.name}_bucket{labels} {cumulative}")
        lines.append(f"{self.name}_bucket{_label_text(pairs + [('le', '+Inf')])} {child.count}")
        lines.append(f"{self.name}_sum{_label_text(pairs)} {_format_value(child.total)}")
        lines.append(f"{self.name}_count{_label_text(pairs)} {child.count}")
        return lines


class HubMetrics:
    """Counters and gauges describing the hub and its global state graph."""

    def __init__(self) -> None:
        self._graph_nodes = _GaugeVec(
            "ark_hub_graph_nodes_total", "全局图中节点总数", ["node_type"]
        )
        self._graph_edges = _GaugeVec(
            "ark_hub_graph_edges_total", "全局图中边总数", ["edge_type"]
        )
        self._events_received = _CounterVec(
            "ark_hub_events_received_total", "Hub 接收的事件总数", ["event_type", "node_id"]
        )
        self._websocket_connections = _GaugeVec(
            "ark_hub_websocket_connections", "当前 WebSocket 连接数", ["status"]
        )
        self._query_duration = _HistogramVec(
            "ark_hub_cluster_query_duration_seconds",
            "集群查询耗时",
            ["query_type"],
            _QUERY_BUCKETS,
        )
        self._fix_actions = _CounterVec(
            "ark_hub_cluster_fix_actions_total",
            "集群修复动作总数",
            ["action_type", "node_id", "result"],
        )
        self._agent_events = _CounterVec(
            "ark_hub_agent_events_received_total",
            "从各 Agent 接收的事件数",
            ["node_id", "event_type"],
        )
        self._families: tuple[_MetricVec, ...] = (
            self._graph_nodes,
            self._graph_edges,
            self._events_received,
            self._websocket_connections,
            self._query_duration,
            self._fix_actions,
            self._agent_events,
        )

    def update_graph_metrics(self, graph: Any) -> None:
        """Set node and edge counts by type; types absent from the graph keep their last value."""
        node_counts = Counter(node.node_type.value for node in graph.all_nodes().values())
        for node_type, count in node_counts.items():
            self._graph_nodes.set([node_type], count)
        edge_counts = Counter(edge.edge_type.value for edge in graph.all_edges())
        for edge_type, count in edge_counts.items():
            self._graph_edges.set([edge_type], count)

    def record_event_received(self, event_type: str, node_id: str) -> None:
        self._events_received.inc([event_type, node_id])
        self._agent_events.inc([node_id, event_type])

    def update_websocket_connections(self, connected: int, disconnected: int) -> None:
        self._websocket_connections.set(["connected"], connected)
        self._websocket_connections.set(["disconnected"], disconnected)

    def record_query_duration(self, query_type: str, duration_seconds: float) -> None:
        self._query_duration.observe([query_type], duration_seconds)

    def record_fix_action(self, action_type: str, node_id: str, result: str) -> None:
        self._fix_actions.inc([action_type, node_id, result])

    def gather(self) -> str:
        """All metrics with at least one sample, in the Prometheus text format."""
        lines: list[str] = []
        for family in sorted(self._families, key=lambda f: f.name):
            lines.extend(family.render())
        return "".join(line + "\n" for line in lines)