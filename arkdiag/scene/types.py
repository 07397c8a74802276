"""Scene kinds, severities and the result of a scene analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SceneType(str, Enum):
    """Failure scenes the analyzers know how to explain."""

    GPU_OOM = "gpu_oom"
    GPU_UTIL_LOW = "gpu_util_low"
    GPU_ERROR = "gpu_error"
    NPU_SUBHEALTH = "npu_subhealth"
    WORKLOAD_STALLED = "workload_stalled"
    NETWORK_STALL = "network_stall"
    NETWORK_DROP = "network_drop"
    STORAGE_IO_ERROR = "storage_io_error"
    STORAGE_SLOW = "storage_slow"
    PROCESS_BLOCKED = "process_blocked"
    PROCESS_CRASH = "process_crash"

    def __str__(self) -> str:
        return self.value


class Severity(str, Enum):
    """How urgent a diagnosed scene is."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    def __str__(self) -> str:
        return self.value


@dataclass
class AnalysisResult:
    """What an analyzer concluded about one process."""

    scene: SceneType
    root_causes: list[str] = field(default_factory=list)
    confidence: float = 0.0
    recommendations: list[str] = field(default_factory=list)
    recommended_actions: list[str] = field(default_factory=list)
    severity: Severity = Severity.WARNING