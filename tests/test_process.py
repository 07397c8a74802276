from arkdiag.event import Event, EventType
from arkdiag.graph import Edge, EdgeType, Node, NodeType, StateGraph
from arkdiag.scene.process import ProcessCrashAnalyzer
from arkdiag.scene.types import SceneType, Severity


class Snapshot:
    """A fixed graph view built from explicit nodes and edges."""

    def __init__(self, edges, nodes):
        self._edges = list(edges)
        self._nodes = {node.id: node for node in nodes}

    def all_edges(self):
        return list(self._edges)

    def all_nodes(self):
        return dict(self._nodes)


def test_error_found_through_graph():
    graph = StateGraph()
    for event in (
        Event(ts=1000, event_type=EventType.PROCESS_STATE, entity_id="proc-300",
              value="start", job_id="job-1", pid=300),
        Event(ts=1001, event_type=EventType.COMPUTE_UTIL, entity_id="gpu-1", value="70", pid=300),
        Event(ts=1002, event_type=EventType.ERROR_HW, entity_id="gpu-1", value="XID_79"),
    ):
        graph.process_event(event)
    result = ProcessCrashAnalyzer().analyze(graph, "pid-300")
    assert result.root_causes == ["错误: XID_79"]
    assert result.confidence == 0.75
    assert result.severity is Severity.CRITICAL
    assert result.scene is SceneType.PROCESS_CRASH


def test_crashed_state_and_untyped_error():
    snapshot = Snapshot(
        [Edge(EdgeType.BLOCKED_BY, "pid-4", "error-x", 0)],
        [
            Node("pid-4", NodeType.PROCESS, 0, {"state": "crash"}),
            Node("error-x", NodeType.ERROR, 0, {}),
        ],
    )
    result = ProcessCrashAnalyzer().analyze(snapshot, "pid-4")
    assert result.root_causes == ["进程状态: crash", "错误节点: error-x"]


def test_running_process_gives_default():
    snapshot = Snapshot([], [Node("pid-4", NodeType.PROCESS, 0, {"state": "running"})])
    result = ProcessCrashAnalyzer().analyze(snapshot, "pid-4")
    assert result.root_causes == ["进程可能异常退出"]
    assert len(result.recommendations) == 4
    assert len(result.recommended_actions) == 3


def test_blocked_by_non_error_node_ignored():
    snapshot = Snapshot(
        [Edge(EdgeType.BLOCKED_BY, "pid-4", "gpu-0", 0)],
        [Node("gpu-0", NodeType.RESOURCE, 0, {"error_type": "boom"})],
    )
    result = ProcessCrashAnalyzer().analyze(snapshot, "pid-4")
    assert result.root_causes == ["进程可能异常退出"]