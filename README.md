# kubecontrollers

Building blocks for controllers that keep a network datastore in step with a
cluster. The package uses only the Python standard library and supports
Python 3.10 and later.

| Module | What it offers |
| --- | --- |
| `kubecontrollers.cache` | `ResourceCache`, `ResourceCacheArgs`, `ReconcilerConfig` |
| `kubecontrollers.workqueue` | `WorkQueue`, `QueueShutDown` |
| `kubecontrollers.duration` | `parse_duration` |
| `kubecontrollers.envconfig` | `Config`, `ConfigError` and the `ENV_*` variable names |
| `kubecontrollers.kccapi` | the `KubeControllersConfiguration` resource, `default_kcc`, watch events |
| `kubecontrollers.mergeconfig` | `merge_config`, `RunConfig`, `LogLevel`, `InvalidConfigError` |
| `kubecontrollers.runconfig` | `RunConfigController`, `get_or_create_snapshot` |
| `kubecontrollers.controller` | the `Controller` protocol: `run(stop)` with a `threading.Event` |

## Resource cache

```python
from kubecontrollers.cache import ResourceCache, ResourceCacheArgs, ReconcilerConfig

def list_from_datastore():
    return {"ns1": {"name": "ns1"}}

cache = ResourceCache(ResourceCacheArgs(
    list_func=list_from_datastore,
    object_type=dict,
    reconciler_config=ReconcilerConfig(),
))

cache.prime("ns1", {"name": "ns1"})   # stored, never queued
cache.run("5m")                        # start queueing; reconcile every 5 minutes

cache.set("ns2", {"name": "ns2"})      # new value, so "ns2" is queued
cache.set("ns2", {"name": "ns2"})      # unchanged, so nothing is queued
cache.delete("ns1")                    # removed, so "ns1" is queued

queue = cache.queue                    # a property, not a method
key = queue.get(timeout=1.0)
# ... program the datastore for `key` ...
queue.done(key)
```

- Before `run` is called, `set` fills the cache without queueing anything.
- `set` raises `TypeError` if the value is not exactly of `object_type`.
- `get` returns `None` for a missing key; `clean` removes a key without
  queueing it; `list_keys` returns the cached keys.
- `run` takes durations such as `30s`, `5m` or `2m30s`; `0` turns the periodic
  reconciler off, and an invalid period raises `ValueError`.
- The reconciler runs on a daemon thread and calls `perform_datastore_sync`,
  which queues keys missing from the cache, keys missing from the datastore and
  keys whose values differ. Each case can be switched off in
  `ReconcilerConfig`.

`WorkQueue` holds each key at most once. A key added while it is being
processed is queued again when `done` is called for it. `get` raises
`TimeoutError` when its timeout passes and `QueueShutDown` once `shut_down`
has been called and the queue is empty.

## Durations

```python
from kubecontrollers.duration import parse_duration

parse_duration("2m30s")   # timedelta(seconds=150)
```

The units are `ns`, `us` (or `µs`), `ms`, `s`, `m` and `h`. A bare `0` is
accepted, and the result has microsecond resolution.

## Configuration from the environment

```python
from kubecontrollers.envconfig import Config

cfg = Config.parse({"LOG_LEVEL": "debug", "POLICY_WORKERS": "4"})
```

Without an argument `Config.parse` reads `os.environ`. Each field is read from
its upper-cased name (`LOG_LEVEL`, `WORKLOAD_ENDPOINT_WORKERS`,
`PROFILE_WORKERS`, `POLICY_WORKERS`, `NODE_WORKERS`, `KUBECONFIG`,
`DATASTORE_TYPE`). Unset variables take their defaults: log level `info`, one
worker per controller, no kubeconfig and the `etcdv3` datastore. A worker
count that is not a number raises `ConfigError`.

## Merging with the API resource

```python
from kubecontrollers.kccapi import default_kcc
from kubecontrollers.mergeconfig import merge_config

run_config, status = merge_config({"ENABLED_CONTROLLERS": "node,policy"}, cfg, default_kcc().spec)
```

`merge_config` returns a `RunConfig` and the
`KubeControllersConfigurationStatus` that describes it. An environment
variable (`LOG_LEVEL`, `ENABLED_CONTROLLERS`, `RECONCILER_PERIOD`,
`COMPACTION_PERIOD`, `HEALTH_ENABLED`, `SYNC_NODE_LABELS`,
`AUTO_HOST_ENDPOINTS`) always takes precedence over the matching field of the
resource, and every one that was used is recorded in the status. An invalid
value, an unknown controller name, or `flannelmigration` in
`ENABLED_CONTROLLERS` raises `InvalidConfigError`. With the `kubernetes`
datastore, node labels are never synced and nodes are never deleted.

## Following configuration changes

```python
from kubecontrollers.runconfig import RunConfigController

with RunConfigController(cfg, client, environ) as controller:
    first = controller.next_config(timeout=10)
    # ... start controllers from `first`; a later config means a restart is needed ...
```

`client` is any object with these methods:

- `get(name)` returns the resource or raises `ResourceDoesNotExist`;
- `create(kcc)` and `update(kcc)` return the stored resource;
- `list(name)` returns a pair of the items and a resource version;
- `watch(resource_version)` returns an iterable of `WatchEvent`s with a
  `stop()` method.

A background thread fetches the `default` resource (creating it from
`default_kcc()` if it is missing), writes the merged status back, and follows
the watch. `next_config` emits the first `RunConfig` and then one each time
the merged configuration changes. It raises `TimeoutError` when nothing
arrives in time and `InvalidConfigError` if the environment is invalid.
Datastore failures are logged and retried after a one-second pause. `stop()`
(or leaving the `with` block) ends the thread.

## What the package does not do

The package has no command-line program and does not talk to a real cluster
or datastore. Callers supply the list function and the
`KubeControllersConfiguration` client. The package has no concrete
controllers, only the `Controller` protocol. It does not write a status file
or run health checks, compact etcd, or serve metrics. `RunConfig` carries the
settings for those tasks (`health_enabled`, `etcd_v3_compaction_period`,
`prometheus_port`), and acting on them is left to the caller.