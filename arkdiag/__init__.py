"""Causal event graph, scene analysis and cluster hub for diagnosing AI training clusters."""

__version__ = "0.1.0"

__all__ = ["event", "graph", "probe", "scene", "hub"]