"""Storage scenes: I/O errors, slow storage and checkpoint timeouts."""

from __future__ import annotations

from arkdiag.graph import EdgeType
from arkdiag.scene.analyzer import GraphView, SceneAnalyzer, _parse_f64
from arkdiag.scene.types import AnalysisResult, SceneType, Severity


def _is_storage(node_id: str) -> bool:
    return "storage" in node_id or "disk" in node_id


def _is_storage_device(node_id: str) -> bool:
    return _is_storage(node_id) or "nvme" in node_id


class StorageIoErrorAnalyzer(SceneAnalyzer):
    """Explains a process hit by storage I/O errors."""

    scene_type = SceneType.STORAGE_IO_ERROR

    def analyze(self, graph: GraphView, target: str) -> AnalysisResult:
        edges = graph.all_edges()
        nodes = graph.all_nodes()
        root_causes: list[str] = []

        for edge in edges:
            if edge.source != target:
                continue
            if edge.edge_type is EdgeType.BLOCKED_BY and _is_storage_device(edge.target):
                node = nodes.get(edge.target)
                if node is not None:
                    error_type = node.metadata.get("error_type")
                    if error_type is not None:
                        root_causes.append(f"存储错误: {error_type}")
                    else:
                        root_causes.append(f"存储设备 {edge.target} 异常")
            if edge.edge_type is EdgeType.WAITS_ON and _is_storage(edge.target):
                node = nodes.get(edge.target)
                if node is not None:
                    io_error = node.metadata.get("io_error")
                    if io_error is not None:
                        root_causes.append(f"存储 IO 错误: {io_error}")

        if not root_causes:
            root_causes.append("存储 IO 可能存在问题")

        return AnalysisResult(
            scene=SceneType.STORAGE_IO_ERROR,
            root_causes=root_causes,
            confidence=0.75,
            recommendations=[
                "检查存储设备健康状态",
                "检查文件系统错误",
                "检查磁盘空间",
                "检查存储设备 I/O 统计",
            ],
            recommended_actions=[
                "检查 dmesg 中的存储错误日志",
                "运行 fsck 检查文件系统",
                "检查存储设备 SMART 状态",
            ],
            severity=Severity.CRITICAL,
        )


class StorageSlowAnalyzer(SceneAnalyzer):
    """Explains a process waiting on storage that is too slow."""

    scene_type = SceneType.STORAGE_SLOW

    def analyze(self, graph: GraphView, target: str) -> AnalysisResult:
        edges = graph.all_edges()
        nodes = graph.all_nodes()
        slow: list[tuple[str, str]] = []

        for edge in edges:
            if (
                edge.source != target
                or edge.edge_type is not EdgeType.WAITS_ON
                or not _is_storage_device(edge.target)
            ):
                continue
            node = nodes.get(edge.target)
            if node is None:
                continue
            metadata = node.metadata

            iops = _parse_f64(metadata.get("iops"))
            if iops is not None and iops < 100.0:
                slow.append((edge.target, f"IOPS 过低: {iops:.0f}"))

            latency = _parse_f64(metadata.get("latency_ms"))
            if latency is not None and latency > 100.0:
                slow.append((edge.target, f"IO 延迟过高: {latency:.1f}ms"))

            qdepth = _parse_f64(metadata.get("qdepth"))
            if qdepth is not None and qdepth > 100.0:
                slow.append((edge.target, f"队列深度过高: {qdepth:.0f}"))

        if slow:
            root_causes = [f"{storage_id}: {reason}" for storage_id, reason in slow]
        else:
            root_causes = ["存储性能可能偏低"]

        return AnalysisResult(
            scene=SceneType.STORAGE_SLOW,
            root_causes=root_causes,
            confidence=0.8 if slow else 0.6,
            recommendations=[
                "检查存储设备性能基准",
                "检查是否有其他进程竞争存储资源",
                "检查存储设备是否过热",
            ],
            recommended_actions=[
                "使用 iostat 监控存储性能",
                "考虑使用更快的存储（NVMe SSD）",
                "优化数据加载策略（预取、缓存）",
            ],
            severity=Severity.WARNING,
        )


class CheckpointTimeoutAnalyzer(SceneAnalyzer):
    """Explains a blocked process that is likely stuck saving or loading a checkpoint."""

    scene_type = SceneType.PROCESS_BLOCKED

    def analyze(self, graph: GraphView, target: str) -> AnalysisResult:
        edges = graph.all_edges()
        nodes = graph.all_nodes()
        root_causes: list[str] = []
        recommendations: list[str] = []

        checkpoint_wait = False
        storage_slow = False
        for edge in edges:
            if (
                edge.source != target
                or edge.edge_type is not EdgeType.WAITS_ON
                or not _is_storage(edge.target)
            ):
                continue
            checkpoint_wait = True
            node = nodes.get(edge.target)
            if node is None:
                continue
            iops = _parse_f64(node.metadata.get("iops"))
            if iops is not None and iops < 50.0:
                storage_slow = True
                root_causes.append(f"存储 {edge.target} IOPS 过低: {iops:.0f}")

        process = nodes.get(target)
        if process is not None:
            state = process.metadata.get("state")
            if state is not None and ("checkpoint" in state or "saving" in state):
                checkpoint_wait = True

        if checkpoint_wait:
            if storage_slow:
                root_causes.append("Checkpoint 操作因存储性能问题而超时")
            else:
                root_causes.append("Checkpoint 操作可能超时")
            recommendations += [
                "检查 Checkpoint 文件大小和存储性能",
                "考虑使用异步 Checkpoint 保存",
                "检查存储设备健康状态",
            ]
        else:
            root_causes.append("可能不是 Checkpoint 相关的问题")

        return AnalysisResult(
            scene=SceneType.PROCESS_BLOCKED,
            root_causes=root_causes,
            confidence=0.8 if checkpoint_wait else 0.5,
            recommendations=recommendations,
            recommended_actions=[
                "尝试触发 Checkpoint Dump 信号 (SIGUSR1)",
                "如果 Checkpoint 损坏，从上一个 Checkpoint 恢复",
                "优化 Checkpoint 保存策略（减少频率或使用增量保存）",
                "检查 Checkpoint 目录的磁盘空间",
            ],
            severity=Severity.WARNING,
        )