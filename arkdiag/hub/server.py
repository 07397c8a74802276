"""The hub: collects agent events over WebSocket and serves the cluster API."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any

from aiohttp import WSMsgType, web

from arkdiag.event import Event
from arkdiag.graph import NodeType, StateGraph
from arkdiag.hub.k8s import K8sController, KubeClient, detect_irreversible_fault
from arkdiag.hub.metrics import CONTENT_TYPE, HubMetrics

log = logging.getLogger(__name__)

DEFAULT_WS_LISTEN = "0.0.0.0:8080"
DEFAULT_HTTP_LISTEN = "0.0.0.0:8081"
DEFAULT_HTTP_PORT = 8081
DEFAULT_FIX_ACTION = "GracefulShutdown"
METRICS_INTERVAL_SECONDS = 5.0
ERROR_WINDOW_MS = 5 * 60 * 1000

_U32_MAX = 0xFFFFFFFF


class ConnectionRegistry:
    """Open agent connections keyed by node id."""

    def __init__(self) -> None:
        self._connections: dict[str, Any] = {}

    def register(self, node_id: str, websocket: Any) -> None:
        self._connections[node_id] = websocket

    def unregister(self, node_id: str) -> Any | None:
        """Forget a node's connection, returning it if there was one."""
        return self._connections.pop(node_id, None)

    def get(self, node_id: str) -> Any | None:
        return self._connections.get(node_id)

    def __len__(self) -> int:
        return len(self._connections)


def _parse_event(text: str, node_id: str) -> Event:
    """Decode an agent's event, giving it ``node_id`` when it names none."""
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise ValueError(f"解析事件失败: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("解析事件失败: event must be a JSON object")
    if data.get("node_id") is None:
        data = {**data, "node_id": node_id}
    try:
        return Event.from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"解析事件失败: {exc}") from exc


def ingest_message(graph: StateGraph, text: str, node_id: str) -> Event:
    """Parse one event message, feed it to ``graph`` and return it.

    Events without a node id are attributed to ``node_id``. Raises
    ValueError when the message is not a valid event.
    """
    event = _parse_event(text, node_id)
    graph.process_event(event)
    return event


def _parse_pid(text: str) -> int | None:
    if not text.isascii() or not text.isdigit():
        return None
    pid = int(text)
    return pid if pid <= _U32_MAX else None


def cluster_why(graph: StateGraph, job_id: str) -> tuple[list[str], list[dict[str, Any]]]:
    """Root causes for every process of a job, and where those processes run.

    Causes carry the name of the node they were found on, are sorted and
    contain no duplicates.
    """
    job_pids = [
        node_id
        for node_id, node in graph.all_nodes().items()
        if node.node_type is NodeType.PROCESS and node.metadata.get("job_id") == job_id
    ]
    if not job_pids:
        return [f"未找到 job_id={job_id} 的进程"], []

    causes: set[str] = set()
    processes: list[dict[str, Any]] = []
    for pid_id in job_pids:
        namespaced = "::" in pid_id
        if namespaced:
            parts = pid_id.split("::")
            pid_part = parts[1]
            if pid_part.startswith("pid-"):
                pid = _parse_pid(pid_part[len("pid-"):])
                if pid is not None:
                    processes.append({"node_id": parts[0], "pid": pid, "node_id_full": pid_id})
        node_name = pid_id.split("::")[0]
        for cause in graph.find_root_cause_by_id(pid_id):
            causes.add(f"{node_name}: {cause}" if namespaced else cause)
    return sorted(causes), processes


def build_fix_command(target_pid: int, action: str | None = None) -> dict[str, Any]:
    """The command an agent receives to repair process ``target_pid``."""
    return {
        "intent": "fix",
        "target_pid": target_pid,
        "action": action if action is not None else DEFAULT_FIX_ACTION,
    }


def _parse_fix_request(body: Any) -> tuple[str, int, str | None]:
    if not isinstance(body, dict):
        raise ValueError("request body must be a JSON object")
    node_id = body.get("node_id")
    target_pid = body.get("target_pid")
    action = body.get("action")
    if not isinstance(node_id, str):
        raise ValueError("node_id must be a string")
    if isinstance(target_pid, bool) or not isinstance(target_pid, int):
        raise ValueError("target_pid must be an integer")
    if not 0 <= target_pid <= _U32_MAX:
        raise ValueError("target_pid out of range")
    if action is not None and not isinstance(action, str):
        raise ValueError("action must be a string")
    return node_id, target_pid, action


def create_api_app(
    graph: StateGraph, connections: ConnectionRegistry, metrics: HubMetrics
) -> web.Application:
    """The HTTP API: metrics, cluster root-cause queries, process list and fixes."""

    async def metrics_handler(request: web.Request) -> web.Response:
        try:
            body = metrics.gather()
        except Exception as exc:
            log.error("[hub-metrics] 收集指标失败: %s", exc)
            return web.Response(text=f"Error: {exc}", status=500)
        return web.Response(body=body.encode("utf-8"), headers={"Content-Type": CONTENT_TYPE})

    async def why_handler(request: web.Request) -> web.Response:
        job_id = request.query.get("job_id")
        if job_id is None:
            return web.json_response({"error": "missing job_id parameter"})
        try:
            causes, processes = cluster_why(graph, job_id)
        except Exception as exc:
            return web.json_response({"error": str(exc)})
        return web.json_response({"job_id": job_id, "causes": causes, "processes": processes})

    async def ps_handler(request: web.Request) -> web.Response:
        processes = [
            {
                "id": node.id,
                "job_id": node.metadata.get("job_id", "-"),
                "state": node.metadata.get("state", "unknown"),
            }
            for node in graph.active_processes()
        ]
        return web.json_response({"processes": processes})

    async def fix_handler(request: web.Request) -> web.Response:
        try:
            node_id, target_pid, action = _parse_fix_request(await request.json())
        except ValueError as exc:
            return web.json_response({"error": f"invalid fix request: {exc}"}, status=400)

        websocket = connections.get(node_id)
        if websocket is None:
            return web.json_response({"error": f"节点 {node_id} 未连接"}, status=404)

        command = build_fix_command(target_pid, action)
        action_name = command["action"]
        try:
            if websocket.closed:
                raise ConnectionError("connection closed")
            await websocket.send_str(json.dumps(command, ensure_ascii=False))
        except (ConnectionError, RuntimeError):
            metrics.record_fix_action(action_name, node_id, "failed")
            return web.json_response({"error": "发送命令失败：连接已关闭"}, status=500)
        metrics.record_fix_action(action_name, node_id, "sent")
        return web.json_response({"success": True, "message": f"命令已发送到节点 {node_id}"})

    app = web.Application()
    app.router.add_get("/metrics", metrics_handler)
    app.router.add_get("/api/v1/why", why_handler)
    app.router.add_get("/api/v1/ps", ps_handler)
    app.router.add_post("/api/v1/fix", fix_handler)
    return app


def create_ws_app(
    graph: StateGraph,
    connections: ConnectionRegistry,
    metrics: HubMetrics,
    controller: K8sController | None = None,
) -> web.Application:
    """The WebSocket endpoint that agents stream their events to."""
    background: set[asyncio.Task[Any]] = set()

    def _fault_done(task: asyncio.Task[Any]) -> None:
        background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("[k8s-controller] 处理故障失败: %s", task.exception())

    async def handler(request: web.Request) -> web.WebSocketResponse:
        websocket = web.WebSocketResponse()
        await websocket.prepare(request)
        peer = request.remote or "unknown"
        log.info("[hub] 新节点连接: %s", peer)

        # Agents name their node in their events; until then use the peer address.
        node_id = f"node-{peer}"
        connections.register(node_id, websocket)
        log.info("[hub] 注册节点连接: %s (临时)", node_id)
        try:
            async for message in websocket:
                if message.type is WSMsgType.ERROR:
                    log.error("[hub] 连接 %s 出错: %s", peer, websocket.exception())
                    break
                if message.type is not WSMsgType.TEXT:
                    continue
                try:
                    event = _parse_event(message.data, node_id)
                except ValueError as exc:
                    log.error("[hub] %s", exc)
                    continue

                if event.node_id != node_id:
                    connections.unregister(node_id)
                    node_id = event.node_id
                    connections.register(node_id, websocket)
                    log.info("[hub] 更新节点连接: %s", node_id)

                try:
                    graph.process_event(event)
                except Exception as exc:
                    log.error("[hub] 处理事件失败: %s", exc)
                    continue
                log.info("[hub] 收到事件: %s from %s", event.event_type.value, node_id)
                metrics.record_event_received(event.event_type.value, node_id)

                if controller is not None:
                    fault = detect_irreversible_fault(event)
                    if fault is not None:
                        task = asyncio.create_task(controller.handle_irreversible_fault(fault))
                        background.add(task)
                        task.add_done_callback(_fault_done)
        finally:
            connections.unregister(node_id)
            log.info("[hub] 节点 %s 已从连接表移除", node_id)
        return websocket

    async def cancel_background(app: web.Application) -> None:
        for task in list(background):
            task.cancel()

    app = web.Application()
    app.router.add_get("/{tail:.*}", handler)
    app.on_cleanup.append(cancel_background)
    return app


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port_text = address.rpartition(":")
    if not sep or not port_text.isdigit():
        raise ValueError(f"invalid listen address: {address!r}")
    port = int(port_text)
    if port > 0xFFFF:
        raise ValueError(f"invalid port in listen address: {address!r}")
    return host.strip("[]") or "0.0.0.0", port


def _http_port(address: str) -> int:
    port_text = address.split(":")[-1]
    if port_text.isdigit() and int(port_text) <= 0xFFFF:
        return int(port_text)
    return DEFAULT_HTTP_PORT


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ark-hub", description="Ark 全局中控：集群级状态图和根因分析"
    )
    parser.add_argument("--ws-listen", default=DEFAULT_WS_LISTEN, help="WebSocket 监听地址")
    parser.add_argument("--http-listen", default=DEFAULT_HTTP_LISTEN, help="HTTP API 监听地址")
    parser.add_argument(
        "--enable-k8s-controller",
        action="store_true",
        help="启用 Kubernetes 控制器（自动打污点和驱逐 Pod）",
    )
    return parser


async def _serve(
    ws_host: str, ws_port: int, http_port: int, enable_k8s_controller: bool
) -> None:
    graph = StateGraph(error_window_ms=ERROR_WINDOW_MS)
    metrics = HubMetrics()
    connections = ConnectionRegistry()

    client: KubeClient | None = None
    controller: K8sController | None = None
    if enable_k8s_controller:
        try:
            client = KubeClient.in_cluster()
        except RuntimeError as exc:
            log.warning("无法初始化 Kubernetes 控制器: %s", exc)
            log.warning("继续运行，但不会执行自动节点隔离操作")
        else:
            controller = K8sController(client, enabled=True)
            log.info("Kubernetes 控制器已启用")
    else:
        log.info("Kubernetes 控制器未启用（使用 --enable-k8s-controller 启用）")

    ws_runner = web.AppRunner(create_ws_app(graph, connections, metrics, controller))
    http_runner = web.AppRunner(create_api_app(graph, connections, metrics))
    await ws_runner.setup()
    await http_runner.setup()
    try:
        await web.TCPSite(ws_runner, ws_host, ws_port).start()
        log.info("WebSocket 服务器已启动，等待节点连接...")
        await web.TCPSite(http_runner, "0.0.0.0", http_port).start()
        log.info("HTTP API 服务器已启动")
        log.info("Prometheus Metrics 端点: http://0.0.0.0:%d/metrics", http_port)
        while True:
            metrics.update_graph_metrics(graph)
            metrics.update_websocket_connections(len(connections), 0)
            await asyncio.sleep(METRICS_INTERVAL_SECONDS)
    finally:
        await http_runner.cleanup()
        await ws_runner.cleanup()
        if client is not None:
            await client.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the hub until interrupted."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        ws_host, ws_port = _split_address(args.ws_listen)
    except ValueError as exc:
        parser.error(str(exc))
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    log.info("ark-hub 启动中...")
    log.info("WebSocket 监听地址: ws://%s", args.ws_listen)
    log.info("HTTP API 监听地址: http://%s", args.http_listen)
    try:
        asyncio.run(
            _serve(ws_host, ws_port, _http_port(args.http_listen), args.enable_k8s_controller)
        )
    except KeyboardInterrupt:
        log.info("[hub] 已关闭")
    return 0