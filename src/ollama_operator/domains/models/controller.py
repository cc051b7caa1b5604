"""Change-notification dispatcher driving the OllamaModel reconciler.

A watch thread turns store notifications into ``ChangeEvent``s on a
``WorkQueue``. Worker threads take keys off the queue and run the
reconciler. The queue never hands the same key to two workers at once,
so passes for one record are serialized while different records
reconcile in parallel.
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from ollama_operator.domains.models.reconciler import STORE_RETRY_DELAY, ReconcileResult
from ollama_operator.utils.errors import OperatorError

if TYPE_CHECKING:
    from ollama_operator.domains.models.reconciler import OllamaModelReconciler
    from ollama_operator.domains.models.store import OllamaModelStore

logger = logging.getLogger(__name__)

# Pause before re-opening a watch that failed
WATCH_RETRY_DELAY = 10.0


class ChangeType(str, Enum):
    """Kind of change reported for a record."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RESYNC = "resync"


_WATCH_EVENT_TYPES = {
    "ADDED": ChangeType.CREATED,
    "MODIFIED": ChangeType.MODIFIED,
    "DELETED": ChangeType.DELETED,
}


@dataclass(frozen=True)
class ObjectKey:
    """Identity of a record."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ChangeEvent:
    """A typed change notification for one record."""

    type: ChangeType
    key: ObjectKey
    resource_version: str | None = None

    @classmethod
    def from_watch(cls, event_type: str, raw: dict) -> ChangeEvent | None:
        """Build from a raw watch event; returns None for non-object events."""
        change = _WATCH_EVENT_TYPES.get(event_type)
        metadata = raw.get("metadata") or {}
        if change is None or not metadata.get("name"):
            return None
        return cls(
            type=change,
            key=ObjectKey(metadata.get("namespace", ""), metadata["name"]),
            resource_version=metadata.get("resourceVersion"),
        )


@dataclass(order=True)
class _Delayed:
    ready_at: float
    key: ObjectKey = field(compare=False)


class WorkQueue:
    """De-duplicating work queue with per-key serialization.

    - A key queued several times is processed once.
    - A key re-added while a worker holds it is queued again only after
      ``done`` is called for it.
    - ``add_after`` schedules a key for later.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: list[ObjectKey] = []
        self._dirty: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._delayed: list[_Delayed] = []
        self._shutdown = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def is_shutdown(self) -> bool:
        """Check if the queue has been shut down."""
        return self._shutdown

    def add(self, key: ObjectKey) -> None:
        """Queue a key for processing."""
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: ObjectKey, delay: float) -> None:
        """Queue a key once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            heapq.heappush(self._delayed, _Delayed(self._clock() + delay, key))
            self._cond.notify()

    def get(self, timeout: float | None = None) -> ObjectKey | None:
        """Take the next key, blocking until one is ready.

        Returns:
            The key, or None on shutdown or timeout.
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                if self._shutdown:
                    return None
                self._promote_delayed_locked()
                if self._queue:
                    key = self._queue.pop(0)
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key

                wait = None
                if self._delayed:
                    wait = max(self._delayed[0].ready_at - self._clock(), 0)
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: ObjectKey) -> None:
        """Release a key taken with ``get``."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        """Stop handing out keys and wake all waiting workers."""
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    def _add_locked(self, key: ObjectKey) -> None:
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def _promote_delayed_locked(self) -> None:
        now = self._clock()
        while self._delayed and self._delayed[0].ready_at <= now:
            self._add_locked(heapq.heappop(self._delayed).key)


class ModelController:
    """Runs the watch, resync and worker threads for OllamaModels."""

    def __init__(
        self,
        store: OllamaModelStore,
        reconciler: OllamaModelReconciler,
        namespace: str,
        workers: int = 2,
        reconcile_timeout: float = 1800.0,
        resync_period: float = 300.0,
        watch_timeout: int = 300,
        queue: WorkQueue | None = None,
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self._namespace = namespace
        self._workers = workers
        self._reconcile_timeout = reconcile_timeout
        self._resync_period = resync_period
        self._watch_timeout = watch_timeout
        self._queue = queue or WorkQueue()
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._active: dict[ObjectKey, threading.Event] = {}
        self._active_lock = threading.Lock()

    @property
    def queue(self) -> WorkQueue:
        """Get the controller's work queue."""
        return self._queue

    @property
    def is_running(self) -> bool:
        """Check if the controller threads are running."""
        return bool(self._threads) and not self._stop.is_set()

    def start(self) -> None:
        """Start watch, resync and worker threads."""
        if self._threads:
            return
        logger.info(
            f"Starting OllamaModel controller in namespace '{self._namespace}' "
            f"with {self._workers} workers"
        )
        self._spawn("watch", self._watch_loop)
        self._spawn("resync", self._resync_loop)
        for i in range(self._workers):
            self._spawn(f"worker-{i}", self._worker_loop)

    def stop(self, timeout: float = 10.0) -> None:
        """Stop all threads, cancelling in-flight passes."""
        logger.info("Stopping OllamaModel controller")
        self._stop.set()
        self._queue.shutdown()
        with self._active_lock:
            for cancel in self._active.values():
                cancel.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

    def enqueue(self, event: ChangeEvent) -> None:
        """Queue a record for reconciliation."""
        logger.debug(f"Enqueue {event.key} ({event.type.value})")
        self._queue.add(event.key)

    def process_next(self, timeout: float | None = None) -> bool:
        """Reconcile the next queued record.

        Returns:
            False when the queue is shut down or no key arrived in time.
        """
        key = self._queue.get(timeout)
        if key is None:
            return False
        try:
            result = self._run_pass(key)
            self._handle_result(key, result)
        finally:
            self._queue.done(key)
        return True

    def resync(self) -> int:
        """Queue every record in the namespace.

        Returns:
            Number of records queued.
        """
        models = self._store.list(self._namespace)
        for model in models:
            self.enqueue(ChangeEvent(ChangeType.RESYNC, ObjectKey(model.namespace, model.name)))
        return len(models)

    def _run_pass(self, key: ObjectKey) -> ReconcileResult:
        cancel = threading.Event()
        timer = threading.Timer(self._reconcile_timeout, cancel.set)
        timer.daemon = True
        with self._active_lock:
            self._active[key] = cancel
        if self._stop.is_set():
            cancel.set()
        timer.start()
        try:
            return self._reconciler.reconcile(key.namespace, key.name, cancel)
        except Exception as e:
            logger.exception(f"Unexpected error reconciling {key}: {e}")
            return ReconcileResult(requeue_after=STORE_RETRY_DELAY, error=e)
        finally:
            timer.cancel()
            with self._active_lock:
                self._active.pop(key, None)

    def _handle_result(self, key: ObjectKey, result: ReconcileResult) -> None:
        if not result.requeue:
            return
        delay = result.requeue_after if result.requeue_after is not None else STORE_RETRY_DELAY
        if result.error is not None:
            logger.info(f"Requeueing {key} in {delay:.0f}s after error: {result.error}")
        else:
            logger.debug(f"Requeueing {key} in {delay:.0f}s")
        self._queue.add_after(key, delay)

    def _spawn(self, name: str, target: Callable[[], None]) -> None:
        thread = threading.Thread(target=target, name=f"ollamamodel-{name}", daemon=True)
        thread.start()
        self._threads.append(thread)

    def _worker_loop(self) -> None:
        while not self._stop.is_set():
            if not self.process_next(timeout=1.0) and self._queue.is_shutdown:
                return

    def _watch_loop(self) -> None:
        resource_version: str | None = None
        while not self._stop.is_set():
            try:
                for event_type, raw in self._store.watch(
                    self._namespace, resource_version, self._watch_timeout
                ):
                    if self._stop.is_set():
                        return
                    if event_type == "ERROR":
                        # Usually 410 Gone: our resourceVersion is too old
                        logger.info(f"Watch error, restarting from current state: {raw}")
                        resource_version = None
                        break
                    event = ChangeEvent.from_watch(event_type, raw)
                    if event is None:
                        continue
                    resource_version = event.resource_version or resource_version
                    self.enqueue(event)
            except OperatorError as e:
                logger.warning(f"Watch on OllamaModels failed: {e}")
                resource_version = None
                self._stop.wait(WATCH_RETRY_DELAY)
            except Exception as e:
                logger.exception(f"Unexpected watch failure: {e}")
                resource_version = None
                self._stop.wait(WATCH_RETRY_DELAY)

    def _resync_loop(self) -> None:
        while not self._stop.wait(self._resync_period):
            try:
                count = self.resync()
                logger.debug(f"Resync queued {count} OllamaModels")
            except OperatorError as e:
                logger.warning(f"Resync of OllamaModels failed: {e}")
