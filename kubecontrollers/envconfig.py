"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, fields

__all__ = [
    "ConfigError",
    "Config",
    "ENV_LOG_LEVEL",
    "ENV_RECONCILER_PERIOD",
    "ENV_ENABLED_CONTROLLERS",
    "ENV_COMPACTION_PERIOD",
    "ENV_HEALTH_ENABLED",
    "ENV_SYNC_NODE_LABELS",
    "ENV_AUTO_HOST_ENDPOINTS",
    "ALL_ENVS",
]

ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_RECONCILER_PERIOD = "RECONCILER_PERIOD"
ENV_ENABLED_CONTROLLERS = "ENABLED_CONTROLLERS"
ENV_COMPACTION_PERIOD = "COMPACTION_PERIOD"
ENV_HEALTH_ENABLED = "HEALTH_ENABLED"
ENV_SYNC_NODE_LABELS = "SYNC_NODE_LABELS"
ENV_AUTO_HOST_ENDPOINTS = "AUTO_HOST_ENDPOINTS"

ALL_ENVS = (
    ENV_LOG_LEVEL,
    ENV_RECONCILER_PERIOD,
    ENV_ENABLED_CONTROLLERS,
    ENV_COMPACTION_PERIOD,
    ENV_HEALTH_ENABLED,
    ENV_SYNC_NODE_LABELS,
    ENV_AUTO_HOST_ENDPOINTS,
)

_OCTAL = re.compile(r"[+-]?0[0-7]+")


class ConfigError(ValueError):
    """Raised when an environment variable holds a value of the wrong kind."""


def _parse_int(value: str) -> int:
    if _OCTAL.fullmatch(value):
        return int(value, 8)
    return int(value, 0)


@dataclass
class Config:
    """Settings read from the environment, with their defaults."""

    # Minimum log level to emit.
    log_level: str = "info"
    # Number of workers to run for each controller.
    workload_endpoint_workers: int = 1
    profile_workers: int = 1
    policy_workers: int = 1
    node_workers: int = 1
    # Path to a kubeconfig file to use for accessing the k8s API.
    kubeconfig: str = ""
    # etcdv3 or kubernetes
    datastore_type: str = "etcdv3"

    @classmethod
    def parse(cls, environ: Mapping[str, str] | None = None) -> "Config":
        """Build a Config from ``environ`` (``os.environ`` by default).

        Each field is read from the upper-cased field name. Raises
        ConfigError if an integer field holds something that is not a number.
        """
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            name = f.name.upper()
            if name not in env:
                continue
            raw = env[name]
            if f.type in (int, "int"):
                try:
                    values[f.name] = _parse_int(raw)
                except ValueError as exc:
                    raise ConfigError(
                        f"envconfig.Process: assigning {name} to {f.name}: "
                        f"converting {raw!r} to type int"
                    ) from exc
            else:
                values[f.name] = raw
        return cls(**values)