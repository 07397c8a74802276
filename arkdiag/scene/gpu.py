"""GPU scenes: out-of-memory and low utilisation."""

from __future__ import annotations

from arkdiag.graph import EdgeType
from arkdiag.scene.analyzer import GraphView, SceneAnalyzer, _parse_f64
from arkdiag.scene.types import AnalysisResult, SceneType, Severity


class GpuOomAnalyzer(SceneAnalyzer):
    """Explains a process that ran out of GPU memory."""

    scene_type = SceneType.GPU_OOM

    def analyze(self, graph: GraphView, target: str) -> AnalysisResult:
        edges = graph.all_edges()
        nodes = graph.all_nodes()
        root_causes: list[str] = []
        recommendations: list[str] = []

        for edge in edges:
            if edge.source != target or edge.edge_type is not EdgeType.BLOCKED_BY:
                continue
            node = nodes.get(edge.target)
            if node is None or "gpu" not in node.id:
                continue
            error_type = node.metadata.get("error_type")
            if error_type is not None and ("OOM" in error_type or "out of memory" in error_type):
                root_causes.append(f"GPU {node.id} 显存不足")

        for edge in edges:
            if (
                edge.source != target
                or edge.edge_type is not EdgeType.CONSUMES
                or not edge.target.startswith("gpu-")
            ):
                continue
            node = nodes.get(edge.target)
            if node is None:
                continue
            usage = _parse_f64(node.metadata.get("mem_usage"))
            if usage is not None and usage > 95.0:
                root_causes.append(f"GPU {edge.target} 显存使用率过高: {usage:.1f}%")
                recommendations.append(f"检查 GPU {edge.target} 上的进程显存使用")

        if not root_causes:
            root_causes.append("GPU 显存可能不足")

        recommendations += [
            "使用 nvidia-smi 检查显存使用情况",
            "考虑降低批处理大小或模型精度",
            "检查是否有显存泄漏",
        ]
        recommended_actions = [
            "尝试触发框架层的 Checkpoint Dump 信号 (SIGUSR1)",
            "隔离该节点，执行 ark zap 清理僵尸进程",
            "修改批量大小 (Batch Size) 后重提任务",
        ]
        return AnalysisResult(
            scene=SceneType.GPU_OOM,
            root_causes=root_causes,
            confidence=0.9 if len(root_causes) > 1 else 0.7,
            recommendations=recommendations,
            recommended_actions=recommended_actions,
            severity=Severity.CRITICAL,
        )


class GpuUtilLowAnalyzer(SceneAnalyzer):
    """Explains a process whose GPUs or NPUs sit nearly idle."""

    scene_type = SceneType.GPU_UTIL_LOW

    def analyze(self, graph: GraphView, target: str) -> AnalysisResult:
        edges = graph.all_edges()
        nodes = graph.all_nodes()
        root_causes: list[str] = []
        recommendations: list[str] = []

        low_util: list[tuple[str, float]] = []
        has_waits_on = False
        for edge in edges:
            if edge.source != target:
                continue
            if edge.edge_type is EdgeType.CONSUMES and edge.target.startswith(("gpu-", "npu-")):
                node = nodes.get(edge.target)
                if node is not None:
                    util = _parse_f64(node.metadata.get("util"))
                    if util is not None and util < 10.0:
                        low_util.append((edge.target, util))
            if edge.edge_type is EdgeType.WAITS_ON:
                has_waits_on = True

        if low_util:
            root_causes += [f"{device} 利用率极低: {util:.1f}%" for device, util in low_util]
            if has_waits_on:
                root_causes.append("进程可能在等待数据加载或网络传输")
                recommendations += ["检查数据加载速度", "检查网络带宽"]
            else:
                root_causes.append("GPU 可能处于空闲状态")
                recommendations += ["检查训练循环是否正常", "检查是否有死锁或阻塞"]
        else:
            root_causes.append("GPU 利用率可能偏低")

        recommendations += [
            "使用 nvidia-smi 或 ascend-toolkit 检查 GPU/NPU 状态",
            "检查训练代码中的同步点",
            "检查数据预处理是否成为瓶颈",
        ]
        recommended_actions = [
            "优化数据加载管道（增加 DataLoader workers）",
            "检查是否有不必要的同步操作",
            "考虑使用混合精度训练提升吞吐",
        ]
        return AnalysisResult(
            scene=SceneType.GPU_UTIL_LOW,
            root_causes=root_causes,
            confidence=0.8 if low_util else 0.6,
            recommendations=recommendations,
            recommended_actions=recommended_actions,
            severity=Severity.WARNING,
        )