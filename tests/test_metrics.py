import re
from types import SimpleNamespace

import pytest

from arkdiag.graph import EdgeType, NodeType
from arkdiag.hub.metrics import HubMetrics

_LABEL = re.compile(r'(\w+)="((?:[^"\\]|\\.)*)"')


def _samples(text):
    samples = {}
    for line in text.splitlines():
        if not line or line.startswith("#"):
            continue
        series, value = line.rsplit(" ", 1)
        if "{" in series:
            name, labels = series.split("{", 1)
            pairs = tuple(sorted(_LABEL.findall(labels)))
        else:
            name, pairs = series, ()
        samples[(name, pairs)] = float(value)
    return samples


class FakeGraph:
    def __init__(self, node_types, edge_types):
        self._nodes = {
            f"n{i}": SimpleNamespace(id=f"n{i}", node_type=t, metadata={})
            for i, t in enumerate(node_types)
        }
        self._edges = [SimpleNamespace(edge_type=t, source="a", target="b") for t in edge_types]

    def all_nodes(self):
        return self._nodes

    def all_edges(self):
        return self._edges


def test_empty_metrics_render_nothing():
    assert HubMetrics().gather() == ""


def test_graph_metrics_count_by_type():
    metrics = HubMetrics()
    graph = FakeGraph(
        [NodeType.PROCESS, NodeType.PROCESS, NodeType.RESOURCE, NodeType.ERROR],
        [EdgeType.CONSUMES, EdgeType.WAITS_ON, EdgeType.WAITS_ON],
    )
    metrics.update_graph_metrics(graph)
    samples = _samples(metrics.gather())
    assert samples[("ark_hub_graph_nodes_total", (("node_type", "process"),))] == 2
    assert samples[("ark_hub_graph_nodes_total", (("node_type", "resource"),))] == 1
    assert samples[("ark_hub_graph_nodes_total", (("node_type", "error"),))] == 1
    assert samples[("ark_hub_graph_edges_total", (("edge_type", "waits_on"),))] == 2
    assert samples[("ark_hub_graph_edges_total", (("edge_type", "consumes"),))] == 1
    assert ("ark_hub_graph_edges_total", (("edge_type", "blocked_by"),)) not in samples


def test_graph_metrics_keep_absent_types():
    metrics = HubMetrics()
    metrics.update_graph_metrics(FakeGraph([NodeType.ERROR, NodeType.PROCESS], []))
    metrics.update_graph_metrics(FakeGraph([NodeType.PROCESS] * 3, []))
    samples = _samples(metrics.gather())
    assert samples[("ark_hub_graph_nodes_total", (("node_type", "error"),))] == 1
    assert samples[("ark_hub_graph_nodes_total", (("node_type", "process"),))] == 3


def test_events_received_feeds_both_counters():
    metrics = HubMetrics()
    metrics.record_event_received("error.hw", "node-a")
    metrics.record_event_received("error.hw", "node-a")
    metrics.record_event_received("compute.util", "node-b")
    samples = _samples(metrics.gather())
    key = (("event_type", "error.hw"), ("node_id", "node-a"))
    assert samples[("ark_hub_events_received_total", key)] == 2
    assert samples[("ark_hub_agent_events_received_total", key)] == 2
    other = (("event_type", "compute.util"), ("node_id", "node-b"))
    assert samples[("ark_hub_events_received_total", other)] == 1


def test_websocket_connections_are_set_not_added():
    metrics = HubMetrics()
    metrics.update_websocket_connections(4, 1)
    metrics.update_websocket_connections(3, 0)
    samples = _samples(metrics.gather())
    assert samples[("ark_hub_websocket_connections", (("status", "connected"),))] == 3
    assert samples[("ark_hub_websocket_connections", (("status", "disconnected"),))] == 0


def test_query_duration_histogram_is_cumulative():
    metrics = HubMetrics()
    metrics.record_query_duration("why", 0.05)
    metrics.record_query_duration("why", 2.0)
    text = metrics.gather()
    assert "# TYPE ark_hub_cluster_query_duration_seconds histogram" in text
    samples = _samples(text)
    name = "ark_hub_cluster_query_duration_seconds_bucket"
    bounds = ["0.001", "0.01", "0.1", "1", "5", "10", "+Inf"]
    counts = [samples[(name, (("le", b), ("query_type", "why")))] for b in bounds]
    assert counts == sorted(counts)
    assert counts[0] == 0
    assert counts[-1] == 2
    assert samples[(name, (("le", "0.1"), ("query_type", "why")))] == 1
    assert samples[("ark_hub_cluster_query_duration_seconds_count", (("query_type", "why"),))] == 2
    assert samples[
        ("ark_hub_cluster_query_duration_seconds_sum", (("query_type", "why"),))
    ] == pytest.approx(2.05)


def test_fix_actions_counted_per_result():
    metrics = HubMetrics()
    metrics.record_fix_action("GracefulShutdown", "node-a", "success")
    metrics.record_fix_action("GracefulShutdown", "node-a", "failure")
    metrics.record_fix_action("GracefulShutdown", "node-a", "success")
    samples = _samples(metrics.gather())
    base = (("action_type", "GracefulShutdown"), ("node_id", "node-a"))
    success = tuple(sorted(base + (("result", "success"),)))
    failure = tuple(sorted(base + (("result", "failure"),)))
    assert samples[("ark_hub_cluster_fix_actions_total", success)] == 2
    assert samples[("ark_hub_cluster_fix_actions_total", failure)] == 1


def test_label_values_are_escaped():
    metrics = HubMetrics()
    metrics.record_event_received('odd"type', "node-a")
    text = metrics.gather()
    assert 'event_type="odd\\"type"' in text


def test_families_are_sorted_by_name():
    metrics = HubMetrics()
    metrics.update_websocket_connections(1, 0)
    metrics.record_event_received("error.hw", "node-a")
    text = metrics.gather()
    names = [line.split()[2] for line in text.splitlines() if line.startswith("# TYPE")]
    assert names == sorted(names)
    assert len(names) == 3