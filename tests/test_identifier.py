from arkdiag.event import Event, EventType
from arkdiag.graph import Edge, EdgeType, Node, NodeType, StateGraph
from arkdiag.scene.identifier import SceneIdentifier
from arkdiag.scene.storage import CheckpointTimeoutAnalyzer
from arkdiag.scene.types import SceneType


class FakeGraph:
    def __init__(self, edges, nodes):
        self._edges = [Edge(kind, src, dst, 1) for kind, src, dst in edges]
        self._nodes = {
            node_id: Node(node_id, node_type, 1, dict(meta))
            for node_id, (node_type, meta) in nodes.items()
        }

    def all_edges(self):
        return list(self._edges)

    def all_nodes(self):
        return dict(self._nodes)


def gpu_error_graph(value):
    graph = StateGraph()
    graph.process_event(Event(1000, EventType.COMPUTE_UTIL, "gpu-0", "90", None, 7))
    graph.process_event(Event(1001, EventType.ERROR_HW, "gpu-0", value))
    return graph


def test_registry_holds_all_analyzers_in_priority_order():
    identifier = SceneIdentifier()
    scenes = [a.scene_type for a in identifier.registry.analyzers()]
    assert scenes[0] is SceneType.GPU_OOM
    assert scenes[-1] is SceneType.PROCESS_BLOCKED
    assert len(scenes) == 9


def test_gpu_oom_identified():
    graph = gpu_error_graph("CUDA OOM")
    assert SceneIdentifier().identify_scene(graph, 7) is SceneType.GPU_OOM


def test_gpu_xid_identified_as_gpu_error():
    graph = gpu_error_graph("XID_79")
    assert SceneIdentifier().identify_scene(graph, 7) is SceneType.GPU_ERROR


def test_gpu_error_has_no_analyzer():
    graph = gpu_error_graph("XID_79")
    assert SceneIdentifier().analyze_scene(SceneType.GPU_ERROR, graph, 7) is None


def test_network_stall_from_transport_drop():
    graph = StateGraph()
    graph.process_event(Event(1000, EventType.TRANSPORT_DROP, "network-pid-5", "1"))
    assert SceneIdentifier().identify_scene(graph, 5) is SceneType.NETWORK_STALL


def test_workload_stalled_identified():
    graph = StateGraph()
    graph.process_event(Event(1000, EventType.PROCESS_STATE, "proc-3", "start", "job-1", 3))
    graph.process_event(Event(1001, EventType.COMPUTE_UTIL, "gpu-2", "0", None, 3))
    identifier = SceneIdentifier()
    scene = identifier.identify_scene(graph, 3)
    assert scene is SceneType.WORKLOAD_STALLED
    result = identifier.analyze_scene(scene, graph, 3)
    assert result.scene is SceneType.WORKLOAD_STALLED
    assert result.root_causes[0] == "进程处于死锁/卡死状态"


def test_crash_and_blocked_states():
    crashed = FakeGraph([], {"pid-1": (NodeType.PROCESS, {"state": "crash"})})
    blocked = FakeGraph([], {"pid-1": (NodeType.PROCESS, {"state": "waiting"})})
    identifier = SceneIdentifier()
    assert identifier.identify_scene(crashed, 1) is SceneType.PROCESS_CRASH
    assert identifier.identify_scene(blocked, 1) is SceneType.PROCESS_BLOCKED


def test_npu_overheating_blocker():
    graph = FakeGraph(
        [(EdgeType.BLOCKED_BY, "pid-4", "npu-0")],
        {"npu-0": (NodeType.ERROR, {"temperature": "95"})},
    )
    assert SceneIdentifier().identify_scene(graph, 4) is SceneType.NPU_SUBHEALTH


def test_unknown_process_has_no_scene():
    assert SceneIdentifier().identify_scene(FakeGraph([], {}), 99) is None


def test_process_blocked_uses_checkpoint_analyzer():
    graph = FakeGraph([], {"pid-1": (NodeType.PROCESS, {"state": "saving checkpoint"})})
    result = SceneIdentifier().analyze_scene(SceneType.PROCESS_BLOCKED, graph, 1)
    expected = CheckpointTimeoutAnalyzer().analyze(graph, "pid-1")
    assert result == expected
    assert result.root_causes == ["Checkpoint 操作可能超时"]