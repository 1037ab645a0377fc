# pairgate

This package provides parts for the front of a replicated key-value store. It
has an HTTP API gateway, written as a WSGI application, that turns JSON
requests into calls on a coordinator service. It also has the placement and
consistency algorithms that a coordinator relies on.

## What is inside

Gateway side:

- `pairgate.gateway_config` holds the gateway configuration. `load(path)`
  starts from built-in defaults and reads a YAML file over them. Variables
  named `API_GATEWAY_<SECTION>_<KEY>` take precedence over both, for example
  `API_GATEWAY_SERVER_PORT` or `API_GATEWAY_COORDINATOR_ENDPOINTS`, which is
  comma separated. The result is then validated. Durations such as `"30s"`
  or `"100ms"` are parsed by `parse_duration` into seconds. Any problem
  raises `ConfigError`.
- `pairgate.messages` defines the coordinator request and response
  dataclasses, such as `WriteKeyValueRequest`, `ReadKeyValueResponse` and
  `VectorClock`.
- `pairgate.converter` checks HTTP payloads and query parameters and turns
  them into those requests. Missing fields, bad ports, wrongly typed JSON
  values and unknown consistency levels raise `ConversionError`. The
  defaults are:
  - consistency level: `quorum`
  - replication factor: 3
  - virtual nodes: 150
- `pairgate.responses` turns coordinator replies into response dataclasses.
  `to_json_dict` produces their JSON bodies and leaves out empty optional
  fields.
- `pairgate.errors` maps gRPC status codes to HTTP status codes through
  `ErrorHandler.grpc_to_http_status`. It maps them to application error
  codes through `ErrorHandler.grpc_to_error_code`. Examples of those codes
  are `TENANT_NOT_FOUND` and `RATE_LIMITED`. The same class builds the JSON
  error responses.
- `pairgate.client.CoordinatorClient` calls the coordinator. It retries calls
  that fail with `UNAVAILABLE`, `DEADLINE_EXCEEDED`, `ABORTED` or
  `RESOURCE_EXHAUSTED`. It waits `retry_backoff` seconds before the first
  retry and doubles the wait each time after that, up to `max_retries`
  retries.
- `pairgate.handlers.Handlers` holds one handler per route. Each validates
  the request, calls the client and shapes the reply.
- `pairgate.health.HealthCheck` serves `liveness` and `readiness` and can
  run periodic background checks.
- `pairgate.middleware` contains WSGI middleware for:
  - request IDs
  - access logging
  - exception recovery
  - CORS
  - token-bucket rate limiting (`TokenBucket`, `RateLimitMiddleware`)
  - content type
  - deadlines

  It also has `chain`, which composes them.
- `pairgate.metrics` provides Prometheus-style `Counter`, `Gauge` and
  `Histogram` classes, and the gateway's `Metrics` rendered in text
  exposition format. `MetricsMiddleware` records request counts and
  durations. `MetricsServer` serves the metrics on their own port.
- `pairgate.server.GatewayServer` routes requests and applies recovery,
  request ID, logging, CORS and, when enabled, rate limiting. It serves HTTP
  and can be shut down.

Coordinator side:

- `pairgate.coordinator_config` holds the coordinator configuration
  (`default_config`, `load`, `Config.validate`).
- `pairgate.consistent_hash` provides `ConsistentHashRing`, a SHA-256 hash
  ring with virtual nodes, along with `hash_key` and `extract_node_id`.
- `pairgate.quorum` works out how many replicas a consistency level needs.
- `pairgate.vector_clock` compares, merges and increments vector clocks.

## Routes

| Method | Path                                         | Success status |
|--------|----------------------------------------------|----------------|
| GET    | `/health`                                    | 200            |
| GET    | `/ready`                                     | 200 / 503      |
| POST   | `/v1/key-value`                              | 200            |
| GET    | `/v1/key-value?tenant_id=…&key=…`            | 200            |
| POST   | `/v1/tenants`                                | 201            |
| GET    | `/v1/tenants/{tenant_id}`                    | 200            |
| PUT    | `/v1/tenants/{tenant_id}/replication-factor` | 200            |
| POST   | `/v1/admin/storage-nodes`                    | 202            |
| GET    | `/v1/admin/storage-nodes`                    | 200            |
| DELETE | `/v1/admin/storage-nodes/{node_id}?force=…`  | 202            |
| GET    | `/v1/admin/migrations/{migration_id}`        | 200            |

An unknown path gets a 404 response and a wrong method gets a 405 response.
All errors share one JSON shape:

```json
{"status":"error","error_code":"INVALID_REQUEST","message":"key is required","request_id":"…"}
```

`request_id` is left out when the request has none.

## Examples

Working out quorum sizes:

```python
from pairgate.quorum import calculate_quorum, required_replicas, is_quorum_reached

calculate_quorum(5)                  # 3
required_replicas("one", 3, 3)       # 1
required_replicas("all", 3, 2)       # 3
is_quorum_reached(2, 3)              # True
```

Placing a key on a hash ring:

```python
from pairgate.consistent_hash import ConsistentHashRing, hash_key

ring = ConsistentHashRing()
ring.add_node("storage-a", 150)
ring.add_node("storage-b", 150)
ring.add_node("storage-c", 150)

replicas = ring.get_nodes(hash_key("tenant-1:user:42"), 3)
owner = ring.node_for_hash(hash_key("tenant-1:user:42"))
```

`get_nodes` walks the ring clockwise from the key's hash. It returns at most
one virtual node for each physical node.

Using vector clocks:

```python
from pairgate.messages import VectorClock, VectorClockEntry
from pairgate.vector_clock import Comparison, compare, increment, merge

a = increment(VectorClock(), "coord-1")
b = increment(a, "coord-2")
compare(a, b) is Comparison.BEFORE   # True
merge(a, b).as_dict()                # {"coord-1": 1, "coord-2": 1}
```

Loading configuration:

```python
from pairgate import gateway_config, coordinator_config

gateway = gateway_config.load()                # defaults, ./config.yaml or /etc/api-gateway
gateway = gateway_config.load("gateway.yaml")  # this file must exist
coordinator = coordinator_config.load("coordinator.yaml")
```

When `gateway_config.load` is called without a path, it looks for
`config.yaml` or `config.yml` in the working directory and then in
`/etc/api-gateway`. If it finds neither, it uses the defaults. A path that
you give explicitly must exist, and `coordinator_config.load` always needs a
file.

Running the gateway inside your own program:

```python
from pairgate import gateway_config
from pairgate.client import CoordinatorClient
from pairgate.server import GatewayServer

cfg = gateway_config.load()
client = CoordinatorClient(cfg.coordinator, stub=coordinator_stub)
server = GatewayServer(cfg, client)
server.setup_routes()
done = server.start_async()
# ...
server.shutdown()
```

## What the package does not do

- **No coordinator stubs.** The package does not include the coordinator's
  protobuf definitions or generated gRPC stubs. `CoordinatorClient` has to be
  given one of two things:
  - an object whose methods `WriteKeyValue`, `ReadKeyValue`, `CreateTenant`,
    `UpdateReplicationFactor`, `GetTenant`, `AddStorageNode`,
    `RemoveStorageNode`, `GetMigrationStatus` and `ListStorageNodes` take a
    request and a `timeout=` keyword and return a reply with the fields
    defined in `pairgate.messages`;
  - a stub class, which is built on an insecure channel to the first
    endpoint.
- **No command-line entry point.** Start the server from Python as shown
  above.
- **No metrics in the gateway by default.** `GatewayServer` does not wire in
  metrics. To get them, wrap the application in `MetricsMiddleware` and run a
  `MetricsServer`.
- **No coordinator service.** There is no coordinator server, metadata
  store, idempotency store or storage-node communication. Only the
  coordinator's configuration, hash ring, quorum and vector clock logic are
  here.

## Tests

The tests use pytest. Install them with the `test` extra:

```
pip install -e .[test]
pytest
```