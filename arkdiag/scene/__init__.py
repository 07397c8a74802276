"""Scene identification and per-scene root-cause analyzers."""

__all__ = [
    "analyzer",
    "gpu",
    "identifier",
    "network",
    "npu",
    "process",
    "storage",
    "types",
    "workload",
]