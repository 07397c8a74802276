"""Cordoning nodes with irreversible hardware faults through the Kubernetes API."""

from __future__ import annotations

import json
import logging
import os
import ssl
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import httpx

from arkdiag.event import Event, EventType

log = logging.getLogger(__name__)

TAINT_KEY = "ark.io/hardware-failure"
NODE_ID_LABEL = "ark.io/node-id"
FIELD_MANAGER = "ark-controller"
DEFAULT_COOLDOWN_SECONDS = 300.0

_SERVICE_ACCOUNT = Path("/var/run/secrets/kubernetes.io/serviceaccount")


class FaultKind(str, Enum):
    PERSISTENT_XID_ERROR = "persistent_xid_error"
    RDMA_LINK_DOWN = "rdma_link_down"
    STORAGE_DEVICE_FAILURE = "storage_device_failure"
    OTHER_HARDWARE_FAILURE = "other_hardware_failure"


@dataclass(frozen=True)
class IrreversibleFault:
    """A hardware fault that warrants taking a node out of scheduling.

    Which detail fields are set depends on ``kind``: ``gpu_id`` and
    ``xid_code`` for XID errors, ``interface`` for link loss, ``device`` for
    storage failures and ``reason`` for anything else.
    """

    kind: FaultKind
    node_id: str
    gpu_id: str | None = None
    xid_code: str | None = None
    interface: str | None = None
    device: str | None = None
    reason: str | None = None


def detect_irreversible_fault(event: Event) -> IrreversibleFault | None:
    """The irreversible fault an event reports, or None."""
    node_id = event.node_id if event.node_id is not None else "unknown"
    if event.event_type is EventType.ERROR_HW:
        if "XID" in event.value or "xid" in event.value:
            return IrreversibleFault(
                FaultKind.PERSISTENT_XID_ERROR,
                node_id,
                gpu_id=event.entity_id,
                xid_code=event.value,
            )
        return IrreversibleFault(
            FaultKind.OTHER_HARDWARE_FAILURE,
            node_id,
            reason=f"{event.entity_id}: {event.value}",
        )
    if event.event_type is EventType.ERROR_NET:
        if "link_down" in event.value or "LINK_DOWN" in event.value:
            return IrreversibleFault(FaultKind.RDMA_LINK_DOWN, node_id, interface=event.entity_id)
        return None
    if event.event_type is EventType.TOPO_LINK_DOWN:
        return IrreversibleFault(
            FaultKind.OTHER_HARDWARE_FAILURE,
            node_id,
            reason=f"Topology link down: {event.entity_id} - {event.value}",
        )
    return None


def taint_value(fault: IrreversibleFault) -> str:
    """The value of the hardware-failure taint for a fault."""
    match fault.kind:
        case FaultKind.PERSISTENT_XID_ERROR:
            return f"xid-error:{fault.xid_code}"
        case FaultKind.RDMA_LINK_DOWN:
            return f"rdma-link-down:{fault.interface}"
        case FaultKind.STORAGE_DEVICE_FAILURE:
            return f"storage-failure:{fault.device}"
        case _:
            return f"hardware-failure:{(fault.reason or '').replace(' ', '-')}"


class KubeClient:
    """A minimal asynchronous client for the node, pod and eviction APIs."""

    def __init__(self, base_url: str, token: str | None = None, verify: Any = True) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = httpx.AsyncClient(
            base_url=base_url, headers=headers, verify=verify, timeout=30.0
        )

    @classmethod
    def in_cluster(cls) -> KubeClient:
        """A client using the pod's service account; RuntimeError outside a cluster."""
        host = os.environ.get("KUBERNETES_SERVICE_HOST")
        port = os.environ.get("KUBERNETES_SERVICE_PORT")
        if not host or not port:
            raise RuntimeError("not running inside a Kubernetes cluster")
        try:
            token = (_SERVICE_ACCOUNT / "token").read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise RuntimeError(f"cannot read service account token: {exc}") from exc
        ca_file = _SERVICE_ACCOUNT / "ca.crt"
        verify: Any = ssl.create_default_context(cafile=str(ca_file)) if ca_file.exists() else True
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"
        return cls(f"https://{host}:{port}", token, verify)

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._http.request(method, url, **kwargs)
        response.raise_for_status()
        return response.json() if response.content else {}

    async def get_node(self, name: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/v1/nodes/{name}")

    async def list_nodes(self) -> list[dict[str, Any]]:
        return (await self._request("GET", "/api/v1/nodes")).get("items") or []

    async def list_pods(self) -> list[dict[str, Any]]:
        return (await self._request("GET", "/api/v1/pods")).get("items") or []

    async def patch_node(self, name: str, body: dict[str, Any]) -> dict[str, Any]:
        """Server-side apply ``body`` to a node under the controller's field manager."""
        return await self._request(
            "PATCH",
            f"/api/v1/nodes/{name}",
            params={"fieldManager": FIELD_MANAGER},
            content=json.dumps(body),
            headers={"Content-Type": "application/apply-patch+yaml"},
        )

    async def evict_pod(self, namespace: str, name: str) -> dict[str, Any]:
        """Evict a pod through the eviction subresource, which honours disruption budgets."""
        body = {
            "apiVersion": "policy/v1",
            "kind": "Eviction",
            "metadata": {"name": name, "namespace": namespace},
        }
        return await self._request(
            "POST", f"/api/v1/namespaces/{namespace}/pods/{name}/eviction", json=body
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> KubeClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class K8sController:
    """Taints and drains nodes that report irreversible hardware faults."""

    def __init__(
        self,
        client: Any,
        enabled: bool = False,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    ) -> None:
        self.client = client
        self.enabled = enabled
        self.cooldown_seconds = cooldown_seconds
        self._processed: dict[str, float] = {}

    async def handle_irreversible_fault(self, fault: IrreversibleFault) -> bool:
        """Taint the fault's node and evict its pods; False when skipped.

        Skipped when the controller is disabled or the node was handled within
        the cooldown period. A failed taint is raised; failed evictions are logged.
        """
        if not self.enabled:
            log.info("[k8s-controller] 控制器未启用，跳过操作")
            return False
        node_id = fault.node_id
        last = self._processed.get(node_id)
        if last is not None:
            elapsed = time.monotonic() - last
            if elapsed < self.cooldown_seconds:
                log.info(
                    "[k8s-controller] 节点 %s 在冷却期内，跳过操作（距离上次操作: %.1fs）",
                    node_id,
                    elapsed,
                )
                return False

        log.warning("[k8s-controller] 检测到不可逆故障: %s", fault)
        try:
            await self.taint_node(node_id, fault)
        except Exception:
            log.exception("[k8s-controller] 打污点失败")
            raise
        log.info("[k8s-controller] 节点 %s 已打上 NoSchedule 污点", node_id)

        try:
            count = await self.evict_pods_on_node(node_id)
        except Exception as exc:
            # The taint is in place, so the scheduler keeps new pods away regardless.
            log.warning("[k8s-controller] 驱逐 Pod 时出错: %s", exc)
        else:
            log.info("[k8s-controller] 已驱逐节点 %s 上的 %d 个 Pod", node_id, count)

        self._processed[node_id] = time.monotonic()
        return True

    async def taint_node(self, node_id: str, fault: IrreversibleFault) -> bool:
        """Add the NoSchedule hardware-failure taint; False if the node already has it."""
        name = await self.map_node_id_to_k8s_name(node_id)
        node = await self.client.get_node(name)
        taints = list(((node.get("spec") or {}).get("taints")) or [])
        if any(taint.get("key") == TAINT_KEY for taint in taints):
            log.info("[k8s-controller] 节点 %s 已有污点，跳过", name)
            return False
        taints.append({"key": TAINT_KEY, "value": taint_value(fault), "effect": "NoSchedule"})
        body = {
            "apiVersion": "v1",
            "kind": "Node",
            "metadata": {"name": name},
            "spec": {"taints": taints},
        }
        await self.client.patch_node(name, body)
        return True

    async def evict_pods_on_node(self, node_id: str) -> int:
        """Evict every pod on the node except DaemonSet and static pods; returns how many."""
        name = await self.map_node_id_to_k8s_name(node_id)
        pods = await self.client.list_pods()
        evicted = 0
        for pod in pods:
            if (pod.get("spec") or {}).get("nodeName") != name:
                continue
            metadata = pod.get("metadata") or {}
            owners = metadata.get("ownerReferences") or []
            if any(owner.get("kind") in ("DaemonSet", "Node") for owner in owners):
                continue
            namespace = metadata.get("namespace") or "default"
            pod_name = metadata.get("name")
            if not pod_name:
                raise ValueError("Pod name is missing")
            try:
                await self.client.evict_pod(namespace, pod_name)
            except httpx.HTTPError as exc:
                log.warning(
                    "[k8s-controller] 驱逐 Pod %s/%s 失败（可能受 PDB 限制）: %s",
                    namespace,
                    pod_name,
                    exc,
                )
                continue
            evicted += 1
            log.info("[k8s-controller] 已优雅驱逐 Pod: %s/%s", namespace, pod_name)
        return evicted

    async def map_node_id_to_k8s_name(self, node_id: str) -> str:
        """Resolve an agent node id to a Kubernetes node name.

        Tries the id as a name, then the ``ark.io/node-id`` label, then a node
        whose name contains the id; falls back to the id itself.
        """
        try:
            await self.client.get_node(node_id)
        except httpx.HTTPError:
            pass
        else:
            return node_id

        for node in await self.client.list_nodes():
            metadata = node.get("metadata") or {}
            name = metadata.get("name")
            labels = metadata.get("labels") or {}
            if labels.get(NODE_ID_LABEL) == node_id and name:
                return name
            if name and node_id in name:
                return name
        return node_id