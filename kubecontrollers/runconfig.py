"""Keeps the running configuration in step with the KubeControllersConfiguration resource."""

from __future__ import annotations

import logging
import os
import queue
import threading
from collections.abc import Iterator, Mapping, Sequence
from typing import Protocol

from .envconfig import ALL_ENVS, Config
from .kccapi import (
    DEFAULT_NAME,
    KubeControllersConfiguration,
    ResourceDoesNotExist,
    WatchEvent,
    WatchEventType,
    default_kcc,
)
from .mergeconfig import InvalidConfigError, RunConfig, merge_config

__all__ = ["RunConfigController", "get_or_create_snapshot"]

_logger = logging.getLogger(__name__)

# Seconds to wait before retrying after a datastore failure.
_DATASTORE_BACKOFF = 1.0


class _Watch(Protocol):
    def __iter__(self) -> Iterator[WatchEvent]: ...

    def stop(self) -> None: ...


class _KCCClient(Protocol):
    def get(self, name: str) -> KubeControllersConfiguration: ...

    def create(self, kcc: KubeControllersConfiguration) -> KubeControllersConfiguration: ...

    def update(self, kcc: KubeControllersConfiguration) -> KubeControllersConfiguration: ...

    def list(self, name: str) -> tuple[Sequence[KubeControllersConfiguration], str]: ...

    def watch(self, resource_version: str) -> _Watch: ...


def get_or_create_snapshot(client: _KCCClient) -> KubeControllersConfiguration:
    """Return the default resource, creating it from the defaults if it is missing.

    Errors other than a missing resource propagate to the caller.
    """
    try:
        return client.get(DEFAULT_NAME)
    except ResourceDoesNotExist:
        # Losing a race with another creator is handled by the caller's retry loop.
        return client.create(default_kcc())


class RunConfigController:
    """Merges the environment with the datastore resource and emits RunConfigs.

    A background thread fetches (or creates) the default resource, writes the
    running configuration back into its status, and watches it for changes.
    An initial RunConfig is emitted at start and a new one whenever the merged
    configuration changes.
    """

    def __init__(
        self,
        cfg: Config,
        client: _KCCClient,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        source = os.environ if environ is None else environ
        self._env = {name: source[name] for name in ALL_ENVS if name in source}
        self._cfg = cfg
        self._client = client
        self._out: queue.Queue[RunConfig | Exception] = queue.Queue()
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._watch: _Watch | None = None
        self._current: RunConfig | None = None
        self._thread = threading.Thread(target=self._sync, daemon=True)
        self._thread.start()

    def __enter__(self) -> "RunConfigController":
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def next_config(self, timeout: float | None = None) -> RunConfig:
        """Return the next RunConfig, blocking until one is emitted.

        Raises TimeoutError if none arrives within ``timeout`` seconds, and
        InvalidConfigError if the environment holds an invalid value.
        """
        try:
            item = self._out.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("no new configuration arrived") from None
        if isinstance(item, Exception):
            raise item
        return item

    def stop(self) -> None:
        """Stop watching the datastore and end the background thread."""
        self._stop_event.set()
        with self._lock:
            watch = self._watch
        if watch is not None:
            watch.stop()
        self._thread.join(timeout=_DATASTORE_BACKOFF * 5)

    def _backoff(self) -> None:
        self._stop_event.wait(_DATASTORE_BACKOFF)

    def _publish(self, run: RunConfig, force: bool = False) -> None:
        if force or run != self._current:
            self._current = run
            self._out.put(run)

    def _merge(self, kcc: KubeControllersConfiguration):
        return merge_config(self._env, self._cfg, kcc.spec)

    def _sync(self) -> None:
        snapshot: KubeControllersConfiguration | None = None
        first = True
        try:
            while not self._stop_event.is_set():
                if snapshot is None:
                    try:
                        snapshot = get_or_create_snapshot(self._client)
                    except Exception:
                        _logger.warning(
                            "unable to get KubeControllersConfiguration(default)",
                            exc_info=True,
                        )
                        self._backoff()
                        continue

                run, status = self._merge(snapshot)
                snapshot.status = status
                try:
                    snapshot = self._client.update(snapshot)
                except Exception:
                    _logger.warning(
                        "unable to perform status update on KubeControllersConfiguration(default)",
                        exc_info=True,
                    )
                    snapshot = None
                    self._backoff()
                    continue

                try:
                    _, resource_version = self._client.list(DEFAULT_NAME)
                except Exception:
                    _logger.warning(
                        "unable to list KubeControllersConfiguration(default)", exc_info=True
                    )
                    snapshot = None
                    self._backoff()
                    continue

                self._publish(run, force=first)
                first = False

                self._stop_current_watch()
                try:
                    watch = self._client.watch(resource_version)
                except Exception:
                    _logger.warning(
                        "unable to watch KubeControllersConfigurations", exc_info=True
                    )
                    snapshot = None
                    self._backoff()
                    continue
                with self._lock:
                    self._watch = watch
                if self._stop_event.is_set():
                    break
                snapshot = self._follow(watch, snapshot)
        except InvalidConfigError as exc:
            _logger.error("%s", exc)
            self._out.put(exc)
        finally:
            self._stop_current_watch()

    def _stop_current_watch(self) -> None:
        with self._lock:
            watch, self._watch = self._watch, None
        if watch is not None:
            watch.stop()

    def _follow(
        self, watch: _Watch, snapshot: KubeControllersConfiguration
    ) -> KubeControllersConfiguration | None:
        """Handle watch events; return the snapshot to resume from, or None to resync."""
        for event in watch:
            if self._stop_event.is_set():
                return snapshot
            if event.type is WatchEventType.ERROR:
                _logger.error(
                    "error watching KubeControllersConfiguration: %s", event.error
                )
                self._backoff()
                return None
            if event.type in (WatchEventType.ADDED, WatchEventType.MODIFIED):
                kcc = event.object
                if kcc.name != DEFAULT_NAME:
                    _logger.warning(
                        "unexpected KubeControllersConfiguration object %r", kcc.name
                    )
                    continue
                snapshot = kcc
                run, status = self._merge(snapshot)
                # Writing an unchanged status would trigger another watch event.
                if snapshot.status != status:
                    snapshot.status = status
                    try:
                        snapshot = self._client.update(snapshot)
                    except Exception:
                        _logger.warning(
                            "unable to perform status update on "
                            "KubeControllersConfiguration(default)",
                            exc_info=True,
                        )
                        self._backoff()
                        return None
                self._publish(run)
            elif event.type is WatchEventType.DELETED:
                previous = event.previous
                if previous is not None and previous.name == DEFAULT_NAME:
                    # A full resync recreates the default object if needed.
                    return None
        return snapshot