"""Process crash scene."""

from __future__ import annotations

from arkdiag.graph import EdgeType
from arkdiag.scene.analyzer import GraphView, SceneAnalyzer
from arkdiag.scene.types import AnalysisResult, SceneType, Severity

_CRASH_STATES = ("exit", "crash", "failed")


class ProcessCrashAnalyzer(SceneAnalyzer):
    """Explains a process that exited abnormally."""

    scene_type = SceneType.PROCESS_CRASH

    def analyze(self, graph: GraphView, target: str) -> AnalysisResult:
        nodes = graph.all_nodes()
        edges = graph.all_edges()
        root_causes: list[str] = []

        process = nodes.get(target)
        if process is not None:
            state = process.metadata.get("state")
            if state in _CRASH_STATES:
                root_causes.append(f"进程状态: {state}")

        for edge in edges:
            if edge.source != target or edge.edge_type is not EdgeType.BLOCKED_BY:
                continue
            node = nodes.get(edge.target)
            if node is None or "error" not in node.id:
                continue
            error_type = node.metadata.get("error_type")
            if error_type is not None:
                root_causes.append(f"错误: {error_type}")
            else:
                root_causes.append(f"错误节点: {edge.target}")

        if not root_causes:
            root_causes.append("进程可能异常退出")

        return AnalysisResult(
            scene=SceneType.PROCESS_CRASH,
            root_causes=root_causes,
            confidence=0.75,
            recommendations=[
                "检查进程退出码",
                "检查系统日志",
                "检查资源使用情况（内存、CPU）",
                "检查依赖服务状态",
            ],
            recommended_actions=[
                "检查 Checkpoint 文件是否完整",
                "如果支持，尝试从 Checkpoint 恢复训练",
                "修复根因后重新提交任务",
            ],
            severity=Severity.CRITICAL,
        )