import pytest

from arkdiag.scene.types import AnalysisResult, SceneType, Severity


@pytest.mark.parametrize(
    "scene, name",
    [
        (SceneType.GPU_OOM, "gpu_oom"),
        (SceneType.GPU_UTIL_LOW, "gpu_util_low"),
        (SceneType.GPU_ERROR, "gpu_error"),
        (SceneType.NPU_SUBHEALTH, "npu_subhealth"),
        (SceneType.WORKLOAD_STALLED, "workload_stalled"),
        (SceneType.NETWORK_STALL, "network_stall"),
        (SceneType.NETWORK_DROP, "network_drop"),
        (SceneType.STORAGE_IO_ERROR, "storage_io_error"),
        (SceneType.STORAGE_SLOW, "storage_slow"),
        (SceneType.PROCESS_BLOCKED, "process_blocked"),
        (SceneType.PROCESS_CRASH, "process_crash"),
    ],
)
def test_scene_names(scene, name):
    assert str(scene) == name
    assert SceneType(name) is scene


def test_scene_names_round_trip_and_are_unique():
    names = [str(scene) for scene in SceneType]
    assert len(names) == len(set(names)) == 11
    assert [SceneType(name) for name in names] == list(SceneType)


def test_unknown_scene_name_raises():
    with pytest.raises(ValueError):
        SceneType("gpu_melted")


def test_severity_defaults_to_warning():
    result = AnalysisResult(scene=SceneType.GPU_OOM)
    assert result.severity is Severity.WARNING
    assert result.root_causes == []
    assert result.recommended_actions == []


def test_result_lists_are_independent():
    first = AnalysisResult(scene=SceneType.STORAGE_SLOW)
    second = AnalysisResult(scene=SceneType.STORAGE_SLOW)
    first.root_causes.append("x")
    assert second.root_causes == []