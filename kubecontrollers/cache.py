"""A resource cache that queues keys whose values are created, changed or deleted."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .duration import parse_duration
from .workqueue import WorkQueue

__all__ = ["ReconcilerConfig", "ResourceCacheArgs", "ResourceCache"]

_logger = logging.getLogger(__name__)


@dataclass
class ReconcilerConfig:
    """Switches that suppress updates queued by the periodic reconciler."""

    # Do not queue a key whose datastore value differs from the cached one.
    disable_update_on_change: bool = False
    # Do not queue a key that is cached but missing from the datastore.
    disable_missing_in_datastore: bool = False
    # Do not queue a key that is in the datastore but missing from the cache.
    disable_missing_in_cache: bool = False


@dataclass
class ResourceCacheArgs:
    """Arguments for building a ResourceCache."""

    list_func: Callable[[], Mapping[str, Any]]
    object_type: type
    log_type_desc: str = ""
    reconciler_config: ReconcilerConfig = field(default_factory=ReconcilerConfig)


class _TypeAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['type']}] {msg}", kwargs


class ResourceCache:
    """Stores resources by key and queues keys whose values change.

    Before ``run`` is called, ``set`` only primes the cache. After it, every
    new or changed value queues its key, and a periodic reconciler compares
    the cache with the datastore listing.
    """

    def __init__(self, args: ResourceCacheArgs) -> None:
        self._items: dict[str, Any] = {}
        self._lock = threading.Lock()
        self._queue = WorkQueue()
        self._list_func = args.list_func
        self._object_type = args.object_type
        self._reconciler_config = args.reconciler_config
        self._running = False
        desc = args.log_type_desc or args.object_type.__name__
        self._log = _TypeAdapter(_logger, {"type": desc})

    @property
    def queue(self) -> WorkQueue:
        """The output queue of keys that were created, modified or deleted."""
        return self._queue

    def _is_running(self) -> bool:
        with self._lock:
            return self._running

    def set(self, key: str, value: Any) -> None:
        """Store a value, queueing the key if the value is new or changed."""
        if type(value) is not self._object_type:
            raise TypeError(
                f"wrong object type to store in cache: expected "
                f"{self._object_type.__name__}, found {type(value).__name__}"
            )
        with self._lock:
            present = key in self._items
            existing = self._items.get(key)
            if present and existing == value:
                return
            self._items[key] = value
            running = self._running
        if running:
            self._log.debug("queueing update for %s", key)
            self._queue.add(key)

    def get(self, key: str) -> Any:
        """Return the value stored under key, or None if there is none."""
        with self._lock:
            return self._items.get(key)

    def prime(self, key: str, value: Any) -> None:
        """Store a value without ever queueing an update."""
        with self._lock:
            self._items[key] = value

    def delete(self, key: str) -> None:
        """Remove a key and queue it."""
        self._log.debug("deleting %s from cache", key)
        with self._lock:
            self._items.pop(key, None)
        self._queue.add(key)

    def clean(self, key: str) -> None:
        """Remove a key without queueing an update."""
        self._log.debug("cleaning %s from cache, no update required", key)
        with self._lock:
            self._items.pop(key, None)

    def list_keys(self) -> list[str]:
        """Return the keys currently in the cache."""
        with self._lock:
            return list(self._items)

    def run(self, reconciler_period: str) -> None:
        """Start queueing updates and the periodic reconciler.

        A period of zero disables the reconciler. Raises ValueError if the
        period is not a valid duration such as ``5m``, ``30s`` or ``2m30s``.
        """
        try:
            period = parse_duration(reconciler_period)
        except ValueError as exc:
            raise ValueError(
                f"invalid time duration format for reconciler: {reconciler_period}. "
                "Some valid examples: 5m, 30s, 2m30s etc."
            ) from exc

        if period.total_seconds() == 0:
            self._log.info("reconciler period set to 0, disabling reconciler")
        else:
            threading.Thread(
                target=self._reconcile, args=(period.total_seconds(),), daemon=True
            ).start()

        with self._lock:
            self._running = True

    def _reconcile(self, period_seconds: float) -> None:
        wait = threading.Event()
        while True:
            self._log.debug("performing reconciliation")
            try:
                self.perform_datastore_sync()
            except Exception:
                self._log.exception("reconciliation failed")
                continue
            self._log.debug("reconciliation complete, %ss until next one", period_seconds)
            wait.wait(period_seconds)

    def perform_datastore_sync(self) -> None:
        """Compare the cache with the datastore and queue keys that differ.

        Errors raised by the list function propagate to the caller.
        """
        try:
            datastore = dict(self._list_func())
        except Exception:
            self._log.error("unable to list objects from datastore while reconciling")
            raise

        with self._lock:
            cached = dict(self._items)
        config = self._reconciler_config
        all_keys = set(datastore) | set(cached)
        self._log.debug("reconciling %d keys in total", len(all_keys))

        for key in all_keys:
            if key not in cached:
                if not config.disable_missing_in_cache:
                    self._log.warning("value for %s should not exist, queueing update to remove", key)
                    self._queue.add(key)
            elif key not in datastore:
                if not config.disable_missing_in_datastore:
                    self._log.warning("value for %s is missing in datastore, queueing update", key)
                    self._queue.add(key)
            elif datastore[key] != cached[key]:
                if not config.disable_update_on_change:
                    self._log.warning("value for %s has changed, queueing update", key)
                    self._queue.add(key)