"""Cluster hub: WebSocket ingestion, HTTP API, metrics and Kubernetes remediation."""

__all__ = ["k8s", "metrics", "server"]