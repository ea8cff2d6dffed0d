"""The KubeControllersConfiguration resource, its parts, and datastore events."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

__all__ = [
    "Toggle",
    "AutoHostEndpointConfig",
    "NodeControllerSpec",
    "ReconcilerControllerSpec",
    "ControllersSpec",
    "KubeControllersConfigurationSpec",
    "KubeControllersConfigurationStatus",
    "KubeControllersConfiguration",
    "ResourceDoesNotExist",
    "DatastoreError",
    "WatchEventType",
    "WatchEvent",
    "DEFAULT_NAME",
    "default_kcc",
]

DEFAULT_NAME = "default"


class Toggle(str, Enum):
    """An on/off switch as stored in the resource."""

    ENABLED = "Enabled"
    DISABLED = "Disabled"


@dataclass
class AutoHostEndpointConfig:
    """Whether host endpoints are created automatically."""

    auto_create: str = ""


@dataclass
class NodeControllerSpec:
    """Settings for the node controller."""

    reconciler_period: timedelta | None = None
    sync_labels: str = ""
    host_endpoint: AutoHostEndpointConfig | None = None
    leak_grace_period: timedelta | None = None


@dataclass
class ReconcilerControllerSpec:
    """Settings for a controller whose only option is its reconciler period."""

    reconciler_period: timedelta | None = None


@dataclass
class ControllersSpec:
    """Per-controller settings; a controller that is None is disabled."""

    node: NodeControllerSpec | None = None
    policy: ReconcilerControllerSpec | None = None
    workload_endpoint: ReconcilerControllerSpec | None = None
    service_account: ReconcilerControllerSpec | None = None
    namespace: ReconcilerControllerSpec | None = None


@dataclass
class KubeControllersConfigurationSpec:
    """The desired configuration of the controllers."""

    log_severity_screen: str = ""
    health_checks: str = ""
    etcd_v3_compaction_period: timedelta | None = None
    prometheus_metrics_port: int | None = None
    controllers: ControllersSpec = field(default_factory=ControllersSpec)


@dataclass
class KubeControllersConfigurationStatus:
    """The configuration the controllers are actually running with."""

    running_config: KubeControllersConfigurationSpec = field(
        default_factory=KubeControllersConfigurationSpec
    )
    environment_vars: dict[str, str] = field(default_factory=dict)


@dataclass
class KubeControllersConfiguration:
    """The cluster-wide resource that configures the controllers."""

    name: str = ""
    spec: KubeControllersConfigurationSpec = field(
        default_factory=KubeControllersConfigurationSpec
    )
    status: KubeControllersConfigurationStatus = field(
        default_factory=KubeControllersConfigurationStatus
    )
    resource_version: str = ""

    def copy(self) -> "KubeControllersConfiguration":
        """Return a deep copy that shares no mutable state with this one."""
        return copy.deepcopy(self)


class ResourceDoesNotExist(Exception):
    """Raised when a requested resource is not in the datastore."""


class DatastoreError(Exception):
    """Raised for a failure talking to the datastore."""


class WatchEventType(Enum):
    """The kinds of event a watch delivers."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    ERROR = "ERROR"


@dataclass
class WatchEvent:
    """One change seen by a watch on the datastore."""

    type: WatchEventType
    object: Any = None
    previous: Any = None
    error: Exception | None = None


def default_kcc() -> KubeControllersConfiguration:
    """Return a fresh copy of the default KubeControllersConfiguration."""
    five_minutes = timedelta(minutes=5)
    return KubeControllersConfiguration(
        name=DEFAULT_NAME,
        spec=KubeControllersConfigurationSpec(
            log_severity_screen="Info",
            health_checks=Toggle.ENABLED,
            etcd_v3_compaction_period=timedelta(minutes=10),
            controllers=ControllersSpec(
                node=NodeControllerSpec(
                    reconciler_period=five_minutes,
                    sync_labels=Toggle.ENABLED,
                    host_endpoint=None,
                    leak_grace_period=timedelta(minutes=15),
                ),
                policy=ReconcilerControllerSpec(reconciler_period=five_minutes),
                workload_endpoint=ReconcilerControllerSpec(reconciler_period=five_minutes),
                service_account=ReconcilerControllerSpec(reconciler_period=five_minutes),
                namespace=ReconcilerControllerSpec(reconciler_period=five_minutes),
            ),
        ),
    )