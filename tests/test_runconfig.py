import queue
import threading
import time
from datetime import timedelta

import pytest

from kubecontrollers.envconfig import Config
from kubecontrollers.kccapi import (
    AutoHostEndpointConfig,
    ControllersSpec,
    DatastoreError,
    KubeControllersConfiguration,
    KubeControllersConfigurationSpec,
    NodeControllerSpec,
    ReconcilerControllerSpec,
    ResourceDoesNotExist,
    Toggle,
    WatchEvent,
    WatchEventType,
    default_kcc,
)
from kubecontrollers.mergeconfig import (
    GenericControllerConfig,
    InvalidConfigError,
    LogLevel,
    NodeControllerConfig,
)
from kubecontrollers.runconfig import RunConfigController, get_or_create_snapshot

_CLOSED = object()


class FakeWatch:
    def __init__(self):
        self._events = queue.Queue()
        self.stop_count = 0

    def send(self, event):
        self._events.put(event)

    def stop(self):
        self.stop_count += 1
        self._events.put(_CLOSED)

    def __iter__(self):
        while True:
            event = self._events.get()
            if event is _CLOSED:
                return
            yield event


class FakeClient:
    def __init__(self, get_result=None, get_error=None):
        self.get_result = get_result
        self.get_error = get_error
        self.updated = None
        self.created = None
        self.watches = []
        self._lock = threading.Lock()

    def get(self, name):
        if self.get_error is not None:
            raise self.get_error
        return self.get_result

    def create(self, kcc):
        self.created = kcc
        return kcc

    def update(self, kcc):
        self.updated = kcc.copy()
        return kcc

    def list(self, name):
        items = [self.get_result] if self.get_result is not None else []
        return items, "1"

    def watch(self, resource_version):
        w = FakeWatch()
        with self._lock:
            self.watches.append(w)
        return w


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def start():
    controllers = []

    def _start(environ, client):
        cfg = Config.parse(environ)
        ctrl = RunConfigController(cfg, client, environ)
        controllers.append(ctrl)
        return ctrl

    yield _start
    for ctrl in controllers:
        ctrl.stop()


ENV = {
    "LOG_LEVEL": "debug",
    "RECONCILER_PERIOD": "105s",
    "ENABLED_CONTROLLERS": "node,policy",
    "WORKLOAD_ENDPOINT_WORKERS": "2",
    "PROFILE_WORKERS": "3",
    "POLICY_WORKERS": "4",
    "KUBECONFIG": "/home/user/.kube/config",
    "DATASTORE_TYPE": "etcdv3",
    "HEALTH_ENABLED": "false",
    "COMPACTION_PERIOD": "33m",
    "SYNC_NODE_LABELS": "false",
    "AUTO_HOST_ENDPOINTS": "enabled",
}

EXPECTED_STATUS_ENV = {
    "LOG_LEVEL": "debug",
    "RECONCILER_PERIOD": "105s",
    "ENABLED_CONTROLLERS": "node,policy",
    "HEALTH_ENABLED": "false",
    "COMPACTION_PERIOD": "33m",
    "SYNC_NODE_LABELS": "false",
    "AUTO_HOST_ENDPOINTS": "enabled",
}


def non_default_kcc(health, leak_grace=None, node_period=None):
    return KubeControllersConfiguration(
        name="default",
        spec=KubeControllersConfigurationSpec(
            log_severity_screen="Warning",
            health_checks=health,
            etcd_v3_compaction_period=timedelta(0),
            controllers=ControllersSpec(
                node=NodeControllerSpec(
                    reconciler_period=node_period,
                    sync_labels=Toggle.DISABLED,
                    host_endpoint=AutoHostEndpointConfig(auto_create=Toggle.ENABLED),
                    leak_grace_period=leak_grace,
                ),
                policy=ReconcilerControllerSpec(timedelta(seconds=30)),
                workload_endpoint=ReconcilerControllerSpec(timedelta(seconds=31)),
                namespace=ReconcilerControllerSpec(timedelta(seconds=32)),
                service_account=ReconcilerControllerSpec(timedelta(seconds=33)),
            ),
        ),
    )


def error_kcc():
    return KubeControllersConfiguration(
        name="default",
        spec=KubeControllersConfigurationSpec(log_severity_screen="Error"),
    )


def test_get_or_create_returns_existing():
    kcc = non_default_kcc(Toggle.ENABLED)
    client = FakeClient(get_result=kcc)
    assert get_or_create_snapshot(client) is kcc
    assert client.created is None


def test_get_or_create_creates_default_when_missing():
    client = FakeClient(get_error=ResourceDoesNotExist())
    result = get_or_create_snapshot(client)
    assert result.spec == default_kcc().spec
    assert client.created is result


def test_get_or_create_propagates_other_errors():
    client = FakeClient(get_error=DatastoreError("down"))
    with pytest.raises(DatastoreError):
        get_or_create_snapshot(client)


def test_default_api_values_give_default_run_config(start):
    ctrl = start({}, FakeClient(get_result=default_kcc()))
    run = ctrl.next_config(timeout=5)
    assert run.log_level_screen is LogLevel.INFO
    assert run.health_enabled is True
    assert run.etcd_v3_compaction_period == timedelta(minutes=10)
    rc = run.controllers
    assert rc.node == NodeControllerConfig(
        sync_labels=True,
        auto_host_endpoints=False,
        delete_nodes=True,
        leak_grace_period=timedelta(minutes=15),
    )
    expected = GenericControllerConfig(timedelta(minutes=5), 1)
    assert rc.policy == expected
    assert rc.namespace == expected
    assert rc.workload_endpoint == expected
    assert rc.service_account == expected


def test_default_api_values_write_status(start):
    client = FakeClient(get_result=default_kcc())
    ctrl = start({}, client)
    ctrl.next_config(timeout=5)
    status = client.updated.status
    assert status.environment_vars == {}
    assert status.running_config.health_checks == Toggle.ENABLED
    assert status.running_config.log_severity_screen == "Info"
    assert status.running_config.etcd_v3_compaction_period == timedelta(minutes=10)
    c = status.running_config.controllers
    assert c.node == NodeControllerSpec(
        reconciler_period=None,
        sync_labels=Toggle.ENABLED,
        host_endpoint=AutoHostEndpointConfig(auto_create=Toggle.DISABLED),
        leak_grace_period=timedelta(minutes=15),
    )
    five = ReconcilerControllerSpec(timedelta(minutes=5))
    assert c.policy == five
    assert c.workload_endpoint == five
    assert c.namespace == five
    assert c.service_account == five


def test_non_default_api_values_give_matching_run_config(start):
    kcc = non_default_kcc(Toggle.DISABLED, leak_grace=timedelta(minutes=20))
    ctrl = start({}, FakeClient(get_result=kcc))
    run = ctrl.next_config(timeout=5)
    assert run.log_level_screen is LogLevel.WARNING
    assert run.health_enabled is False
    assert run.etcd_v3_compaction_period == timedelta(0)
    rc = run.controllers
    assert rc.node == NodeControllerConfig(
        sync_labels=False,
        auto_host_endpoints=True,
        delete_nodes=True,
        leak_grace_period=timedelta(minutes=20),
    )
    assert rc.policy == GenericControllerConfig(timedelta(seconds=30), 1)
    assert rc.workload_endpoint == GenericControllerConfig(timedelta(seconds=31), 1)
    assert rc.namespace == GenericControllerConfig(timedelta(seconds=32), 1)
    assert rc.service_account == GenericControllerConfig(timedelta(seconds=33), 1)


def test_non_default_api_values_write_status_matching_spec(start):
    kcc = non_default_kcc(Toggle.DISABLED, leak_grace=timedelta(minutes=20))
    client = FakeClient(get_result=kcc)
    ctrl = start({}, client)
    ctrl.next_config(timeout=5)
    status = client.updated.status
    assert status.environment_vars == {}
    assert status.running_config == client.get_result.spec


def test_missing_resource_creates_default(start):
    client = FakeClient(get_error=ResourceDoesNotExist())
    ctrl = start({}, client)
    ctrl.next_config(timeout=5)
    assert client.created.spec == default_kcc().spec


def test_api_change_sends_new_update(start):
    client = FakeClient(get_error=ResourceDoesNotExist())
    ctrl = start({}, client)
    ctrl.next_config(timeout=5)
    assert wait_for(lambda: len(client.watches) == 1)
    client.watches[0].send(WatchEvent(type=WatchEventType.MODIFIED, object=error_kcc()))
    run = ctrl.next_config(timeout=5)
    assert run.log_level_screen is LogLevel.ERROR


def test_unchanged_spec_sends_no_update(start):
    client = FakeClient(get_error=ResourceDoesNotExist())
    ctrl = start({}, client)
    ctrl.next_config(timeout=5)
    assert wait_for(lambda: len(client.watches) == 1)
    client.watches[0].send(
        WatchEvent(type=WatchEventType.MODIFIED, object=client.created)
    )
    with pytest.raises(TimeoutError):
        ctrl.next_config(timeout=0.5)


def test_non_default_object_is_ignored(start):
    client = FakeClient(get_error=ResourceDoesNotExist())
    ctrl = start({}, client)
    ctrl.next_config(timeout=5)
    assert wait_for(lambda: len(client.watches) == 1)
    other = error_kcc()
    other.name = "other"
    client.watches[0].send(WatchEvent(type=WatchEventType.MODIFIED, object=other))
    with pytest.raises(TimeoutError):
        ctrl.next_config(timeout=0.5)


def test_watch_closed_by_remote_resyncs(start):
    client = FakeClient(get_error=ResourceDoesNotExist())
    ctrl = start({}, client)
    ctrl.next_config(timeout=5)
    assert wait_for(lambda: len(client.watches) == 1)

    client.get_error = None
    client.get_result = client.created
    client.watches[0].send(
        WatchEvent(type=WatchEventType.ERROR, error=DatastoreError("gone"))
    )
    with pytest.raises(TimeoutError):
        ctrl.next_config(timeout=0.5)

    assert wait_for(lambda: len(client.watches) == 2)
    client.watches[1].send(WatchEvent(type=WatchEventType.MODIFIED, object=error_kcc()))
    run = ctrl.next_config(timeout=5)
    assert run.log_level_screen is LogLevel.ERROR


def test_deleting_default_triggers_resync(start):
    client = FakeClient(get_result=default_kcc())
    ctrl = start({}, client)
    ctrl.next_config(timeout=5)
    assert wait_for(lambda: len(client.watches) == 1)
    client.watches[0].send(
        WatchEvent(type=WatchEventType.DELETED, previous=default_kcc())
    )
    assert wait_for(lambda: len(client.watches) == 2)
    assert client.watches[0].stop_count >= 1
    with pytest.raises(TimeoutError):
        ctrl.next_config(timeout=0.3)


def test_env_values_with_default_api(start):
    ctrl = start(dict(ENV), FakeClient(get_result=default_kcc()))
    run = ctrl.next_config(timeout=5)
    assert run.log_level_screen is LogLevel.DEBUG
    assert run.health_enabled is False
    assert run.etcd_v3_compaction_period == timedelta(minutes=33)
    rc = run.controllers
    assert rc.node == NodeControllerConfig(
        sync_labels=False,
        auto_host_endpoints=True,
        delete_nodes=True,
        leak_grace_period=timedelta(minutes=15),
    )
    assert rc.policy == GenericControllerConfig(timedelta(seconds=105), 4)
    assert rc.namespace is None
    assert rc.workload_endpoint is None
    assert rc.service_account is None


def test_env_values_with_default_api_write_status(start):
    client = FakeClient(get_result=default_kcc())
    ctrl = start(dict(ENV), client)
    ctrl.next_config(timeout=5)
    status = client.updated.status
    assert status.environment_vars == EXPECTED_STATUS_ENV
    assert status.running_config.health_checks == Toggle.DISABLED
    assert status.running_config.log_severity_screen == "Debug"
    assert status.running_config.etcd_v3_compaction_period == timedelta(minutes=33)
    c = status.running_config.controllers
    assert c.node == NodeControllerSpec(
        reconciler_period=None,
        sync_labels=Toggle.DISABLED,
        host_endpoint=AutoHostEndpointConfig(auto_create=Toggle.ENABLED),
        leak_grace_period=timedelta(minutes=15),
    )
    assert c.policy == ReconcilerControllerSpec(timedelta(seconds=105))
    assert c.workload_endpoint is None
    assert c.namespace is None
    assert c.service_account is None


def test_env_values_with_non_default_api(start):
    ctrl = start(dict(ENV), FakeClient(get_result=non_default_kcc(Toggle.ENABLED)))
    run = ctrl.next_config(timeout=5)
    assert run.log_level_screen is LogLevel.DEBUG
    assert run.health_enabled is False
    assert run.etcd_v3_compaction_period == timedelta(minutes=33)
    rc = run.controllers
    assert rc.node == NodeControllerConfig(
        sync_labels=False, auto_host_endpoints=True, delete_nodes=True
    )
    assert rc.policy == GenericControllerConfig(timedelta(seconds=105), 4)
    assert rc.workload_endpoint is None
    assert rc.namespace is None
    assert rc.service_account is None


def test_env_values_with_non_default_api_write_status(start):
    client = FakeClient(get_result=non_default_kcc(Toggle.ENABLED))
    ctrl = start(dict(ENV), client)
    ctrl.next_config(timeout=5)
    status = client.updated.status
    assert status.environment_vars == EXPECTED_STATUS_ENV
    assert status.running_config.health_checks == Toggle.DISABLED
    assert status.running_config.log_severity_screen == "Debug"
    assert status.running_config.etcd_v3_compaction_period == timedelta(minutes=33)
    c = status.running_config.controllers
    assert c.node == NodeControllerSpec(
        reconciler_period=None,
        sync_labels=Toggle.DISABLED,
        host_endpoint=AutoHostEndpointConfig(auto_create=Toggle.ENABLED),
    )
    assert c.policy == ReconcilerControllerSpec(timedelta(seconds=105))
    assert c.workload_endpoint is None
    assert c.namespace is None
    assert c.service_account is None


def test_enabled_controllers_use_api_reconciler_periods(start):
    environ = {
        "ENABLED_CONTROLLERS": "node,namespace,policy,serviceaccount,workloadendpoint"
    }
    kcc = non_default_kcc(Toggle.ENABLED, node_period=timedelta(seconds=29))
    ctrl = start(environ, FakeClient(get_result=kcc))
    rc = ctrl.next_config(timeout=5).controllers
    assert rc.policy.reconciler_period == timedelta(seconds=30)
    assert rc.workload_endpoint.reconciler_period == timedelta(seconds=31)
    assert rc.namespace.reconciler_period == timedelta(seconds=32)
    assert rc.service_account.reconciler_period == timedelta(seconds=33)


def test_invalid_env_value_is_raised(start):
    ctrl = start({"LOG_LEVEL": "bogus"}, FakeClient(get_result=default_kcc()))
    with pytest.raises(InvalidConfigError):
        ctrl.next_config(timeout=5)


def test_stop_stops_the_watch():
    client = FakeClient(get_result=default_kcc())
    ctrl = RunConfigController(Config.parse({}), client, {})
    ctrl.next_config(timeout=5)
    assert wait_for(lambda: len(client.watches) == 1)
    ctrl.stop()
    assert client.watches[0].stop_count >= 1
    assert len(client.watches) == 1