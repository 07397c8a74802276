"""The analyzer interface and a registry of analyzers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar, Protocol

from arkdiag.graph import Edge, Node
from arkdiag.scene.types import AnalysisResult, SceneType


class GraphView(Protocol):
    """The read-only part of a state graph that analyzers use."""

    def all_edges(self) -> list[Edge]: ...

    def all_nodes(self) -> dict[str, Node]: ...


def _parse_f64(text: str | None) -> float | None:
    if not text or text != text.strip() or "_" in text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


class SceneAnalyzer(ABC):
    """Explains one kind of scene for a target node of the graph."""

    scene_type: ClassVar[SceneType]

    @abstractmethod
    def analyze(self, graph: GraphView, target: str) -> AnalysisResult:
        """Analyze the node ``target`` (such as ``pid-1234``) in ``graph``."""


class SceneRegistry:
    """Analyzers in registration order, looked up by scene type."""

    def __init__(self) -> None:
        self._analyzers: list[SceneAnalyzer] = []

    def register(self, analyzer: SceneAnalyzer) -> None:
        if not isinstance(analyzer, SceneAnalyzer):
            raise TypeError(f"not a scene analyzer: {analyzer!r}")
        self._analyzers.append(analyzer)

    def get_analyzer(self, scene: SceneType) -> SceneAnalyzer | None:
        """The first registered analyzer for ``scene``, if any."""
        return next((a for a in self._analyzers if a.scene_type is scene), None)

    def analyzers(self) -> tuple[SceneAnalyzer, ...]:
        return tuple(self._analyzers)