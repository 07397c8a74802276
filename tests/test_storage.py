from arkdiag.graph import Edge, EdgeType, Node, NodeType
from arkdiag.scene.storage import (
    CheckpointTimeoutAnalyzer,
    StorageIoErrorAnalyzer,
    StorageSlowAnalyzer,
)
from arkdiag.scene.types import SceneType, Severity

TARGET = "pid-42"


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


EMPTY = FakeGraph([], {})


def test_io_error_fallback_on_empty_graph():
    result = StorageIoErrorAnalyzer().analyze(EMPTY, TARGET)
    assert result.root_causes == ["存储 IO 可能存在问题"]
    assert result.scene is SceneType.STORAGE_IO_ERROR
    assert result.severity is Severity.CRITICAL
    assert result.confidence == 0.75


def test_io_error_reports_error_type_of_blocking_node():
    graph = FakeGraph(
        [(EdgeType.BLOCKED_BY, TARGET, "error-nvme0")],
        {"error-nvme0": (NodeType.ERROR, {"error_type": "EIO"})},
    )
    result = StorageIoErrorAnalyzer().analyze(graph, TARGET)
    assert len(result.root_causes) == 1
    assert result.root_causes[0].startswith("存储错误")
    assert "EIO" in result.root_causes[0]


def test_io_error_without_error_type_names_device():
    graph = FakeGraph(
        [(EdgeType.BLOCKED_BY, TARGET, "disk-a")],
        {"disk-a": (NodeType.RESOURCE, {})},
    )
    result = StorageIoErrorAnalyzer().analyze(graph, TARGET)
    assert len(result.root_causes) == 1
    assert "disk-a" in result.root_causes[0]


def test_io_error_reads_io_error_from_waited_storage():
    graph = FakeGraph(
        [(EdgeType.WAITS_ON, TARGET, "storage-x")],
        {"storage-x": (NodeType.RESOURCE, {"io_error": "timeout"})},
    )
    result = StorageIoErrorAnalyzer().analyze(graph, TARGET)
    assert len(result.root_causes) == 1
    assert "timeout" in result.root_causes[0]


def test_io_error_ignores_other_processes():
    graph = FakeGraph(
        [(EdgeType.BLOCKED_BY, "pid-7", "error-disk")],
        {"error-disk": (NodeType.ERROR, {"error_type": "EIO"})},
    )
    result = StorageIoErrorAnalyzer().analyze(graph, TARGET)
    assert result.root_causes == ["存储 IO 可能存在问题"]


def test_slow_fallback_and_lower_confidence():
    result = StorageSlowAnalyzer().analyze(EMPTY, TARGET)
    assert result.root_causes == ["存储性能可能偏低"]
    assert result.scene is SceneType.STORAGE_SLOW
    assert result.severity is Severity.WARNING


def test_slow_collects_every_symptom_for_device():
    graph = FakeGraph(
        [(EdgeType.WAITS_ON, TARGET, "nvme0")],
        {"nvme0": (NodeType.RESOURCE, {"iops": "20", "latency_ms": "250", "qdepth": "300"})},
    )
    result = StorageSlowAnalyzer().analyze(graph, TARGET)
    assert len(result.root_causes) == 3
    assert all(cause.startswith("nvme0: ") for cause in result.root_causes)
    assert result.confidence > StorageSlowAnalyzer().analyze(EMPTY, TARGET).confidence


def test_slow_healthy_device_is_not_reported():
    graph = FakeGraph(
        [(EdgeType.WAITS_ON, TARGET, "disk-0")],
        {"disk-0": (NodeType.RESOURCE, {"iops": "5000", "latency_ms": "2", "qdepth": "4"})},
    )
    result = StorageSlowAnalyzer().analyze(graph, TARGET)
    assert result.root_causes == ["存储性能可能偏低"]


def test_checkpoint_not_related_without_storage_wait():
    result = CheckpointTimeoutAnalyzer().analyze(EMPTY, TARGET)
    assert result.root_causes == ["可能不是 Checkpoint 相关的问题"]
    assert result.recommendations == []
    assert result.scene is SceneType.PROCESS_BLOCKED
    assert result.confidence == 0.5


def test_checkpoint_slow_storage():
    graph = FakeGraph(
        [(EdgeType.WAITS_ON, TARGET, "storage-ckpt")],
        {"storage-ckpt": (NodeType.RESOURCE, {"iops": "10"})},
    )
    result = CheckpointTimeoutAnalyzer().analyze(graph, TARGET)
    assert result.root_causes[-1] == "Checkpoint 操作因存储性能问题而超时"
    assert "storage-ckpt" in result.root_causes[0]
    assert "检查 Checkpoint 文件大小和存储性能" in result.recommendations
    assert result.confidence == 0.8


def test_checkpoint_state_marks_wait():
    graph = FakeGraph([], {TARGET: (NodeType.PROCESS, {"state": "saving"})})
    result = CheckpointTimeoutAnalyzer().analyze(graph, TARGET)
    assert result.root_causes == ["Checkpoint 操作可能超时"]
    assert len(result.recommended_actions) == 4