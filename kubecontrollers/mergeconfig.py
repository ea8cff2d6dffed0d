"""Merging of environment settings with the KubeControllersConfiguration resource."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from enum import IntEnum

from .duration import parse_duration
from .envconfig import (
    ENV_AUTO_HOST_ENDPOINTS,
    ENV_COMPACTION_PERIOD,
    ENV_ENABLED_CONTROLLERS,
    ENV_HEALTH_ENABLED,
    ENV_LOG_LEVEL,
    ENV_RECONCILER_PERIOD,
    ENV_SYNC_NODE_LABELS,
    Config,
)
from .kccapi import (
    AutoHostEndpointConfig,
    KubeControllersConfigurationSpec,
    KubeControllersConfigurationStatus,
    NodeControllerSpec,
    ReconcilerControllerSpec,
    Toggle,
)

__all__ = [
    "InvalidConfigError",
    "LogLevel",
    "GenericControllerConfig",
    "NodeControllerConfig",
    "ControllersConfig",
    "RunConfig",
    "parse_log_level",
    "merge_config",
]

_logger = logging.getLogger(__name__)

_DEFAULT_RECONCILER_PERIOD = timedelta(minutes=5)
_DEFAULT_COMPACTION_PERIOD = timedelta(minutes=10)
_RECONCILED_CONTROLLERS = ("policy", "workload_endpoint", "service_account", "namespace")

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


class InvalidConfigError(ValueError):
    """Raised when an environment variable holds an invalid value."""


class LogLevel(IntEnum):
    """Log severities, from most to least severe."""

    PANIC = 0
    FATAL = 1
    ERROR = 2
    WARNING = 3
    INFO = 4
    DEBUG = 5

    def __str__(self) -> str:
        return self.name.lower()

    def title(self) -> str:
        """The level's name with a leading capital, e.g. ``"Warning"``."""
        return str(self).capitalize()

    @property
    def logging_level(self) -> int:
        """The equivalent level of the standard logging module."""
        return {
            LogLevel.PANIC: logging.CRITICAL,
            LogLevel.FATAL: logging.CRITICAL,
            LogLevel.ERROR: logging.ERROR,
            LogLevel.WARNING: logging.WARNING,
            LogLevel.INFO: logging.INFO,
            LogLevel.DEBUG: logging.DEBUG,
        }[self]


_LEVEL_WORDS = {
    "panic": LogLevel.PANIC,
    "fatal": LogLevel.FATAL,
    "error": LogLevel.ERROR,
    "warn": LogLevel.WARNING,
    "warning": LogLevel.WARNING,
    "info": LogLevel.INFO,
    "debug": LogLevel.DEBUG,
}


def parse_log_level(text: str) -> LogLevel:
    """Parse a level name case-insensitively; raise ValueError if unknown."""
    try:
        return _LEVEL_WORDS[text.lower()]
    except KeyError:
        raise ValueError(f"not a valid log level: {text!r}") from None


@dataclass
class GenericControllerConfig:
    """Running settings of a cache-based controller."""

    reconciler_period: timedelta = timedelta(0)
    number_of_workers: int = 0


@dataclass
class NodeControllerConfig:
    """Running settings of the node controller."""

    sync_labels: bool = False
    auto_host_endpoints: bool = False
    # Whether the controller deletes Calico nodes; true for etcdv3 datastores.
    delete_nodes: bool = False
    # Grace period before an IP address counts as leaked; zero disables the GC.
    leak_grace_period: timedelta | None = None


@dataclass
class ControllersConfig:
    """Running settings per controller; None means the controller is off."""

    node: NodeControllerConfig | None = None
    policy: GenericControllerConfig | None = None
    workload_endpoint: GenericControllerConfig | None = None
    service_account: GenericControllerConfig | None = None
    namespace: GenericControllerConfig | None = None


@dataclass
class RunConfig:
    """The merged configuration every controller runs with."""

    log_level_screen: LogLevel = LogLevel.INFO
    controllers: ControllersConfig = field(default_factory=ControllersConfig)
    etcd_v3_compaction_period: timedelta = timedelta(0)
    health_enabled: bool = False
    prometheus_port: int = 0


def _invalid(name: str, value: str) -> InvalidConfigError:
    return InvalidConfigError(f"invalid environment variable value {name}={value!r}")


def _parse_bool(name: str, value: str) -> bool:
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise _invalid(name, value)


def _toggle(flag: bool) -> Toggle:
    return Toggle.ENABLED if flag else Toggle.DISABLED


def _merge_log_level(env_vars, status, run, api_spec) -> None:
    if ENV_LOG_LEVEL in env_vars:
        value = env_vars[ENV_LOG_LEVEL]
        status.environment_vars[ENV_LOG_LEVEL] = value
        try:
            run.log_level_screen = parse_log_level(value)
        except ValueError:
            raise _invalid(ENV_LOG_LEVEL, value) from None
    else:
        try:
            run.log_level_screen = parse_log_level(api_spec.log_severity_screen)
        except ValueError:
            _logger.warning(
                "unknown log level %r, using Info", api_spec.log_severity_screen
            )
            run.log_level_screen = LogLevel.INFO
    status.running_config.log_severity_screen = run.log_level_screen.title()


def _merge_enabled_controllers(env_vars, status, run, api_spec) -> None:
    rc = run.controllers
    sc = status.running_config.controllers
    ac = api_spec.controllers

    if ENV_ENABLED_CONTROLLERS in env_vars:
        value = env_vars[ENV_ENABLED_CONTROLLERS]
        status.environment_vars[ENV_ENABLED_CONTROLLERS] = value
        for controller_type in value.split(","):
            if controller_type == "workloadendpoint":
                rc.workload_endpoint = GenericControllerConfig()
                sc.workload_endpoint = ReconcilerControllerSpec()
            elif controller_type in ("profile", "namespace"):
                rc.namespace = GenericControllerConfig()
                sc.namespace = ReconcilerControllerSpec()
            elif controller_type == "policy":
                rc.policy = GenericControllerConfig()
                sc.policy = ReconcilerControllerSpec()
            elif controller_type == "node":
                rc.node = NodeControllerConfig()
                sc.node = NodeControllerSpec()
            elif controller_type == "serviceaccount":
                rc.service_account = GenericControllerConfig()
                sc.service_account = ReconcilerControllerSpec()
            elif controller_type == "flannelmigration":
                raise InvalidConfigError(
                    "cannot run flannelmigration with other controllers"
                )
            else:
                raise InvalidConfigError(f"invalid controller {controller_type!r} provided")
    else:
        if ac.node is not None:
            # The node controller has no cache, so no reconciler period.
            rc.node = NodeControllerConfig()
            sc.node = NodeControllerSpec()
        for name in _RECONCILED_CONTROLLERS:
            if getattr(ac, name) is not None:
                setattr(rc, name, GenericControllerConfig())
                setattr(sc, name, ReconcilerControllerSpec())

    for name in _RECONCILED_CONTROLLERS:
        running = getattr(rc, name)
        api = getattr(ac, name)
        if running is None or api is None:
            continue
        running.reconciler_period = (
            _DEFAULT_RECONCILER_PERIOD if api.reconciler_period is None else api.reconciler_period
        )
        getattr(sc, name).reconciler_period = api.reconciler_period


def _merge_reconciler_period(env_vars, status, run) -> None:
    if ENV_RECONCILER_PERIOD not in env_vars:
        return
    value = env_vars[ENV_RECONCILER_PERIOD]
    status.environment_vars[ENV_RECONCILER_PERIOD] = value
    try:
        period = parse_duration(value)
    except ValueError:
        raise _invalid(ENV_RECONCILER_PERIOD, value) from None
    rc = run.controllers
    sc = status.running_config.controllers
    for name in _RECONCILED_CONTROLLERS:
        running = getattr(rc, name)
        if running is not None:
            running.reconciler_period = period
            getattr(sc, name).reconciler_period = period


def _merge_compaction_period(env_vars, status, run, api_spec) -> None:
    if ENV_COMPACTION_PERIOD in env_vars:
        value = env_vars[ENV_COMPACTION_PERIOD]
        status.environment_vars[ENV_COMPACTION_PERIOD] = value
        try:
            run.etcd_v3_compaction_period = parse_duration(value)
        except ValueError:
            raise _invalid(ENV_COMPACTION_PERIOD, value) from None
    elif api_spec.etcd_v3_compaction_period is not None:
        run.etcd_v3_compaction_period = api_spec.etcd_v3_compaction_period
    else:
        run.etcd_v3_compaction_period = _DEFAULT_COMPACTION_PERIOD
    status.running_config.etcd_v3_compaction_period = run.etcd_v3_compaction_period


def _merge_health_enabled(env_vars, status, run, api_spec) -> None:
    if ENV_HEALTH_ENABLED in env_vars:
        value = env_vars[ENV_HEALTH_ENABLED]
        status.environment_vars[ENV_HEALTH_ENABLED] = value
        run.health_enabled = _parse_bool(ENV_HEALTH_ENABLED, value)
    else:
        # Anything other than an explicit "Disabled" means enabled.
        run.health_enabled = api_spec.health_checks != Toggle.DISABLED
    status.running_config.health_checks = _toggle(run.health_enabled)


def _merge_sync_node_labels(env_vars, status, run, api_spec, env_cfg) -> None:
    node = run.controllers.node
    api_node = api_spec.controllers.node
    if env_cfg.datastore_type == "kubernetes":
        # The labels are already on the Kubernetes nodes.
        status.environment_vars["DATASTORE_TYPE"] = "kubernetes"
        node.sync_labels = False
    elif ENV_SYNC_NODE_LABELS in env_vars:
        value = env_vars[ENV_SYNC_NODE_LABELS]
        status.environment_vars[ENV_SYNC_NODE_LABELS] = value
        node.sync_labels = _parse_bool(ENV_SYNC_NODE_LABELS, value)
    else:
        node.sync_labels = not (
            api_node is not None and api_node.sync_labels == Toggle.DISABLED
        )
    status.running_config.controllers.node.sync_labels = _toggle(node.sync_labels)


def _merge_auto_host_endpoints(env_vars, status, run, api_spec) -> None:
    node = run.controllers.node
    api_node = api_spec.controllers.node
    if ENV_AUTO_HOST_ENDPOINTS in env_vars:
        value = env_vars[ENV_AUTO_HOST_ENDPOINTS]
        status.environment_vars[ENV_AUTO_HOST_ENDPOINTS] = value
        if value.lower() == "enabled":
            node.auto_host_endpoints = True
        elif value.lower() != "disabled":
            raise _invalid(ENV_AUTO_HOST_ENDPOINTS, value)
    elif (
        api_node is not None
        and api_node.host_endpoint is not None
        and api_node.host_endpoint.auto_create == Toggle.ENABLED
    ):
        node.auto_host_endpoints = True
    status.running_config.controllers.node.host_endpoint = AutoHostEndpointConfig(
        auto_create=_toggle(node.auto_host_endpoints)
    )


def merge_config(
    env_vars: Mapping[str, str],
    env_cfg: Config,
    api_spec: KubeControllersConfigurationSpec,
) -> tuple[RunConfig, KubeControllersConfigurationStatus]:
    """Combine environment settings with the resource's spec.

    Returns the running configuration and the status that describes it.
    Raises InvalidConfigError if an environment variable is invalid.
    """
    run = RunConfig()
    status = KubeControllersConfigurationStatus()
    rc = run.controllers

    _merge_log_level(env_vars, status, run, api_spec)
    _merge_enabled_controllers(env_vars, status, run, api_spec)
    _merge_reconciler_period(env_vars, status, run)
    _merge_compaction_period(env_vars, status, run, api_spec)
    _merge_health_enabled(env_vars, status, run, api_spec)

    if api_spec.prometheus_metrics_port is not None:
        run.prometheus_port = api_spec.prometheus_metrics_port

    if rc.node is not None:
        _merge_sync_node_labels(env_vars, status, run, api_spec, env_cfg)
        _merge_auto_host_endpoints(env_vars, status, run, api_spec)
        # There is no environment variable for this one.
        if api_spec.controllers.node is not None:
            leak = api_spec.controllers.node.leak_grace_period
            rc.node.leak_grace_period = leak
            status.running_config.controllers.node.leak_grace_period = leak
        if env_cfg.datastore_type != "kubernetes":
            rc.node.delete_nodes = True

    # Worker counts only come from the environment; the node controller has none.
    if rc.policy is not None:
        rc.policy.number_of_workers = env_cfg.policy_workers
    if rc.workload_endpoint is not None:
        rc.workload_endpoint.number_of_workers = env_cfg.workload_endpoint_workers
    if rc.service_account is not None:
        rc.service_account.number_of_workers = env_cfg.profile_workers
    if rc.namespace is not None:
        rc.namespace.number_of_workers = env_cfg.profile_workers

    return run, status