"""Network stall scene."""

from __future__ import annotations

from arkdiag.graph import EdgeType
from arkdiag.scene.analyzer import GraphView, SceneAnalyzer, _parse_f64
from arkdiag.scene.types import AnalysisResult, SceneType, Severity


def _is_network(node_id: str) -> bool:
    return node_id.startswith("network-") or "net" in node_id


class NetworkStallAnalyzer(SceneAnalyzer):
    """Explains a process held up by the network."""

    scene_type = SceneType.NETWORK_STALL

    def analyze(self, graph: GraphView, target: str) -> AnalysisResult:
        edges = graph.all_edges()
        nodes = graph.all_nodes()
        root_causes: list[str] = []

        network_waits = 0
        for edge in edges:
            if (
                edge.source != target
                or edge.edge_type is not EdgeType.WAITS_ON
                or not _is_network(edge.target)
            ):
                continue
            network_waits += 1
            root_causes.append(f"等待网络资源: {edge.target}")
            node = nodes.get(edge.target)
            if node is not None:
                rate = _parse_f64(node.metadata.get("drop_rate"))
                if rate is not None and rate > 10.0:
                    root_causes.append(f"网络 {edge.target} 丢包率过高: {rate:.1f}%")

        for edge in edges:
            if (
                edge.source != target
                or edge.edge_type is not EdgeType.BLOCKED_BY
                or not _is_network(edge.target)
            ):
                continue
            node = nodes.get(edge.target)
            if node is not None and "error" in node.id:
                root_causes.append(f"网络错误: {node.id}")

        if not root_causes:
            root_causes.append("网络可能阻塞")

        return AnalysisResult(
            scene=SceneType.NETWORK_STALL,
            root_causes=root_causes,
            confidence=0.85 if network_waits > 0 else 0.6,
            recommendations=[
                "检查网络带宽使用情况",
                "检查网络丢包统计",
                "检查 RDMA 连接状态（如果使用）",
            ],
            recommended_actions=["检查交换机 PFC 配置", "检查 RoCE/HCCS 连接状态"],
            severity=Severity.WARNING,
        )