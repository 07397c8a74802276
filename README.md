# arkdiag

`arkdiag` turns a stream of low-level telemetry events from an AI training
cluster into a live causal graph, and explains why a job is stuck.

Every probe reports one of twelve atomic event types (`compute.util`,
`transport.drop`, `error.hw`, `process.state`, …). The state graph
(`arkdiag.graph.StateGraph`) links processes to the resources they consume
(`consumes`), the network or storage they wait on (`waits_on`) and the errors
that block them (`blocked_by`). On top of that graph sit:

- **scene analyzers** (`arkdiag.scene`) for GPU OOM, low GPU utilisation,
  NPU sub-health, stalled workloads, network stalls, process crashes, storage
  I/O errors, slow storage and checkpoint timeouts. Each returns an
  `AnalysisResult` with root causes, recommendations, recommended actions, a
  confidence and a severity;
- a **cluster hub** (`arkdiag.hub`) that collects events from many nodes over
  WebSocket, keeps one namespaced graph for the whole cluster, exposes
  Prometheus metrics and an HTTP API, and can optionally taint and drain
  Kubernetes nodes that show irreversible hardware faults;
- helpers in `arkdiag.probe` that decode raw TCP-retransmit records and render
  them as JSON lines in the hub's event format, or as readable debug text.

## Events

```python
from arkdiag.event import Event, EventType

event = Event.create(EventType("compute.util"), "gpu-03", "85", None, 4242)
line = event.to_json()          # one JSON object, ready to send to the hub
same = Event.from_json(line)    # raises ValueError on malformed input
```

An event carries a millisecond timestamp `ts`, its `event_type`, an
`entity_id` such as `gpu-03` or `mlx5_0`, an optional `job_id` and `pid`, a
string `value` and, once it has passed through an agent, a `node_id`. When a
`node_id` is present the graph stores every node under `"<node_id>::<id>"`, so
`pid-1234` on two machines never collides.

`EventBus` is a bounded asyncio queue (`send` waits while it is full), and
`dummy_probe(bus)` feeds it one to three random events per second for testing.

## The state graph

```python
from arkdiag.graph import StateGraph

graph = StateGraph()
graph.process_event(event)
graph.active_processes()          # process nodes not marked exit/zombie
graph.find_root_cause(4242)       # e.g. ["error-gpu-03: XID_79", "等待资源: network"]
```

Error nodes older than the error window (five minutes by default) are dropped,
together with their `blocked_by` edges; processes marked `exit` or `zombie` are
removed on the next event. Resource nodes are never expired.

## Scenes

```python
from arkdiag.scene.identifier import SceneIdentifier

identifier = SceneIdentifier()
scene = identifier.identify_scene(graph, 4242)        # a SceneType or None
if scene is not None:
    result = identifier.analyze_scene(scene, graph, 4242)
```

Analyzers only read the graph through `all_edges()` and `all_nodes()`, so any
object offering those two methods can be analyzed.

## Running the hub

```
ark-hub --ws-listen 0.0.0.0:8080 --http-listen 0.0.0.0:8081
```

Agents connect to the WebSocket address and send one JSON event per text
message; events without a `node_id` are attributed to `node-<peer address>`.
The HTTP side serves:

| Method | Path | Purpose |
|--------|------|---------|
| GET  | `/metrics` | Prometheus text exposition |
| GET  | `/api/v1/why?job_id=<id>` | cluster-wide root causes and processes of a job |
| GET  | `/api/v1/ps` | active processes with their job and state |
| POST | `/api/v1/fix` | send `{"node_id", "target_pid", "action"}` to a connected agent; `action` defaults to `GracefulShutdown` |

`/api/v1/fix` answers 400 for a malformed request, 404 when the node is not
connected and 500 when the command cannot be sent.

Add `--enable-k8s-controller` to let the hub act on irreversible faults
(persistent XID errors, RDMA link loss, other hardware errors, topology
link-down): the affected Kubernetes node gets an `ark.io/hardware-failure`
`NoSchedule` taint and its pods, except those owned by a DaemonSet or a Node,
are evicted through the Eviction API, which respects PodDisruptionBudgets.
Each node is acted on at most once per five-minute cooldown. The controller
uses the pod's in-cluster service account; when those credentials cannot be
found, the hub keeps running without it.

## Probe records

```python
from arkdiag.probe import NetworkEvent, format_event

record = NetworkEvent.from_bytes(raw)   # ValueError if the buffer is too small
print(format_event(record, "jsonl"))    # or "debug"
```

## What the package does not do

- It has no rule engine: there is no loading or matching of YAML diagnosis
  rules. The `arkdiag.rules` subpackage is empty.
- It does not load or attach kernel probes. `arkdiag.probe` only decodes
  records that something else has captured.
- It has no node-side agent or command-line client; the only command is
  `ark-hub`.
- The hub keeps its graph and metrics in memory only; nothing survives a
  restart.