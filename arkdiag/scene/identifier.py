"""Choosing the scene that fits a process and running its analyzer."""

from __future__ import annotations

from arkdiag.graph import EdgeType
from arkdiag.scene.analyzer import GraphView, SceneRegistry, _parse_f64
from arkdiag.scene.gpu import GpuOomAnalyzer, GpuUtilLowAnalyzer
from arkdiag.scene.network import NetworkStallAnalyzer
from arkdiag.scene.npu import NpuSubhealthAnalyzer
from arkdiag.scene.process import ProcessCrashAnalyzer
from arkdiag.scene.storage import (
    CheckpointTimeoutAnalyzer,
    StorageIoErrorAnalyzer,
    StorageSlowAnalyzer,
)
from arkdiag.scene.types import AnalysisResult, SceneType
from arkdiag.scene.workload import WorkloadStalledAnalyzer


def _npu_unhealthy(metadata: dict[str, str]) -> bool:
    temperature = _parse_f64(metadata.get("temperature"))
    if temperature is not None and temperature > 85.0:
        return True
    hccs = metadata.get("hccs_lane_status")
    return hccs is not None and (hccs == "degraded" or "降级" in hccs)


class SceneIdentifier:
    """Classifies a process into a scene and dispatches to the matching analyzer."""

    def __init__(self) -> None:
        self.registry = SceneRegistry()
        for analyzer in (
            GpuOomAnalyzer(),
            NpuSubhealthAnalyzer(),
            WorkloadStalledAnalyzer(),
            GpuUtilLowAnalyzer(),
            NetworkStallAnalyzer(),
            ProcessCrashAnalyzer(),
            StorageIoErrorAnalyzer(),
            StorageSlowAnalyzer(),
            CheckpointTimeoutAnalyzer(),
        ):
            self.registry.register(analyzer)

    def identify_scene(self, graph: GraphView, pid: int) -> SceneType | None:
        """The scene for process ``pid``, or None when nothing stands out."""
        pid_id = f"pid-{pid}"
        edges = graph.all_edges()
        nodes = graph.all_nodes()

        for edge in edges:
            if edge.source != pid_id or edge.edge_type is not EdgeType.BLOCKED_BY:
                continue
            node = nodes.get(edge.target)
            if node is None:
                continue
            if "gpu" in node.id:
                error_type = node.metadata.get("error_type")
                if error_type is not None:
                    if "OOM" in error_type or "out of memory" in error_type:
                        return SceneType.GPU_OOM
                    if "error" in error_type or "XID" in error_type:
                        return SceneType.GPU_ERROR
            if (node.id.startswith("npu-") or "ascend" in node.id) and _npu_unhealthy(
                node.metadata
            ):
                return SceneType.NPU_SUBHEALTH

        for edge in edges:
            if (
                edge.source == pid_id
                and edge.edge_type is EdgeType.WAITS_ON
                and (edge.target.startswith("network-") or "net" in edge.target)
            ):
                return SceneType.NETWORK_STALL

        process = nodes.get(pid_id)
        if process is None:
            return None
        state = process.metadata.get("state")
        if state in ("exit", "crash", "failed"):
            return SceneType.PROCESS_CRASH
        if state in ("blocked", "waiting"):
            return SceneType.PROCESS_BLOCKED
        if state == "running":
            low_util = 0
            total = 0
            has_io_wait = False
            for edge in edges:
                if edge.source != pid_id:
                    continue
                if edge.edge_type is EdgeType.CONSUMES:
                    total += 1
                    resource = nodes.get(edge.target)
                    if resource is not None:
                        util = _parse_f64(resource.metadata.get("util"))
                        if util is not None and util < 1.0:
                            low_util += 1
                if edge.edge_type is EdgeType.WAITS_ON and (
                    "network" in edge.target or "storage" in edge.target
                ):
                    has_io_wait = True
            if total > 0 and low_util == total and not has_io_wait:
                return SceneType.WORKLOAD_STALLED
        return None

    def analyze_scene(
        self, scene: SceneType, graph: GraphView, pid: int
    ) -> AnalysisResult | None:
        """Run the analyzer registered for ``scene``; None if there is none."""
        analyzer = self.registry.get_analyzer(scene)
        if analyzer is None:
            return None
        return analyzer.analyze(graph, f"pid-{pid}")