"""NPU sub-health scene: overheating, degraded HCCS links, throttling."""

from __future__ import annotations

from arkdiag.graph import EdgeType
from arkdiag.scene.analyzer import GraphView, SceneAnalyzer, _parse_f64
from arkdiag.scene.types import AnalysisResult, SceneType, Severity


class NpuSubhealthAnalyzer(SceneAnalyzer):
    """Explains a process running on an NPU that is not fully healthy."""

    scene_type = SceneType.NPU_SUBHEALTH

    def analyze(self, graph: GraphView, target: str) -> AnalysisResult:
        edges = graph.all_edges()
        nodes = graph.all_nodes()
        root_causes: list[str] = []
        recommendations: list[str] = []

        for edge in edges:
            if edge.source != target or edge.edge_type is not EdgeType.CONSUMES:
                continue
            if not (edge.target.startswith("npu-") or "ascend" in edge.target):
                continue
            node = nodes.get(edge.target)
            if node is None:
                continue
            metadata = node.metadata

            temperature = _parse_f64(metadata.get("temperature"))
            if temperature is not None and temperature > 85.0:
                root_causes.append(f"NPU {edge.target} SOC 过温: {temperature:.1f}°C")
                recommendations.append(f"检查 NPU {edge.target} 的散热系统")

            hccs = metadata.get("hccs_lane_status")
            if hccs is not None and (hccs == "degraded" or "降级" in hccs):
                root_causes.append(f"NPU {edge.target} HCCS 链路降级")
                recommendations.append(f"检查 NPU {edge.target} 的 HCCS 连接")

            frequency = _parse_f64(metadata.get("frequency"))
            max_frequency = _parse_f64(metadata.get("max_frequency"))
            if (
                frequency is not None
                and max_frequency is not None
                and frequency < max_frequency * 0.9
            ):
                root_causes.append(
                    f"NPU {edge.target} 频率降频: {frequency:.0f}MHz (最大: {max_frequency:.0f}MHz)"
                )

        if not root_causes:
            root_causes.append("NPU 可能处于亚健康状态")

        recommendations += [
            "检查机器散热和风扇状态",
            "检查 NPU 固件版本和驱动",
            "监控 NPU 温度趋势",
        ]
        return AnalysisResult(
            scene=SceneType.NPU_SUBHEALTH,
            root_causes=root_causes,
            confidence=0.85 if len(root_causes) > 1 else 0.7,
            recommendations=recommendations,
            recommended_actions=[
                "隔离亚健康节点，避免新任务调度到此节点",
                "联系硬件维护团队检查 NPU 硬件状态",
            ],
            severity=Severity.WARNING,
        )