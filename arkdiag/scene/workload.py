"""Workload stall scene: running, idle and not waiting on I/O."""

from __future__ import annotations

from arkdiag.graph import EdgeType
from arkdiag.scene.analyzer import GraphView, SceneAnalyzer, _parse_f64
from arkdiag.scene.types import AnalysisResult, SceneType, Severity


class WorkloadStalledAnalyzer(SceneAnalyzer):
    """Explains a running process whose resources are all idle with no I/O wait."""

    scene_type = SceneType.WORKLOAD_STALLED

    def analyze(self, graph: GraphView, target: str) -> AnalysisResult:
        edges = graph.all_edges()
        nodes = graph.all_nodes()

        process = nodes.get(target)
        if process is None or process.metadata.get("state") != "running":
            return AnalysisResult(
                scene=SceneType.WORKLOAD_STALLED,
                root_causes=["进程不在运行状态"],
                confidence=0.0,
                severity=Severity.INFO,
            )

        low_util = 0
        total = 0
        has_io_wait = False
        for edge in edges:
            if edge.source != target:
                continue
            if edge.edge_type is EdgeType.CONSUMES:
                total += 1
                node = nodes.get(edge.target)
                if node is not None:
                    util = _parse_f64(node.metadata.get("util"))
                    if util is not None and util < 1.0:
                        low_util += 1
            if edge.edge_type is EdgeType.WAITS_ON and any(
                word in edge.target for word in ("network", "storage", "disk")
            ):
                has_io_wait = True

        root_causes: list[str] = []
        recommendations: list[str] = []
        if total > 0 and low_util == total and not has_io_wait:
            root_causes += [
                "进程处于死锁/卡死状态",
                f"所有 {total} 个资源利用率均 < 1%",
                "未检测到网络或存储 IO 等待",
            ]
            recommendations += [
                "检查进程是否在等待锁或信号量",
                "检查进程是否在等待其他进程",
                "检查应用日志中的死锁信息",
            ]
        elif has_io_wait:
            root_causes.append("进程可能在等待 IO 操作完成")
            recommendations.append("检查网络或存储性能")
        else:
            root_causes.append("进程可能处于正常的数据预处理阶段")
            recommendations.append("继续观察，如果超过预期时间再处理")

        return AnalysisResult(
            scene=SceneType.WORKLOAD_STALLED,
            root_causes=root_causes,
            confidence=0.9 if low_util == total and not has_io_wait else 0.6,
            recommendations=recommendations,
            recommended_actions=[
                "如果确认卡死，执行 ark zap 终止进程",
                "检查是否有 Checkpoint 可以恢复",
            ],
            severity=Severity.WARNING,
        )