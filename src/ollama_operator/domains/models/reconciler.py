"""Reconciliation of OllamaModel records against the Ollama daemon.

Each pass reads the record, compares it against the daemon's inventory and
drives at most one step of the lifecycle:

    "" -> Pending -> Pulling -> Ready | Failed

A pass never blocks on the dispatcher. It either finishes or returns a
``ReconcileResult`` asking to be retried later. Every transition is
recomputed from the record and the daemon, so duplicated or replayed
notifications are harmless.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from ollama_operator.clients.ollama import (
    ModelNotFoundError,
    OllamaError,
    PullCancelledError,
    PullProgress,
    RegistryClient,
)
from ollama_operator.domains.models.events import (
    EventReason,
    EventRecorder,
    EventType,
    NullEventRecorder,
)
from ollama_operator.domains.models.formatting import format_size
from ollama_operator.domains.models.models import (
    ModelState,
    OllamaModel,
    digest_from_modelfile,
    truncate_error,
    utcnow,
)
from ollama_operator.utils.errors import NotFoundError, OperatorError
from ollama_operator.utils.retry import DEFAULT_RETRY_POLICY, RetryPolicy, retry_call

if TYPE_CHECKING:
    from ollama_operator.domains.models.store import OllamaModelStore

logger = logging.getLogger(__name__)

# Requeue delay after a failed write to the record store
STORE_RETRY_DELAY = 5.0

# Requeue delay after a failed daemon operation
DAEMON_RETRY_DELAY = 30.0


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a reconciliation pass."""

    requeue_after: float | None = None
    error: Exception | None = None

    @property
    def requeue(self) -> bool:
        """Check if the dispatcher should run the pass again."""
        return self.requeue_after is not None or self.error is not None


class OllamaModelReconciler:
    """Drives OllamaModel records toward the daemon's inventory."""

    def __init__(
        self,
        store: OllamaModelStore,
        ollama: RegistryClient,
        recorder: EventRecorder | None = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ollama = ollama
        self._recorder = recorder or NullEventRecorder()
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._clock = clock
        self._failed_at: dict[tuple[str, str], datetime] = {}
        self._failed_lock = threading.Lock()

    def reconcile(
        self, namespace: str, name: str, cancel: threading.Event | None = None
    ) -> ReconcileResult:
        """Run a single reconciliation pass for one record.

        Args:
            namespace: Record namespace.
            name: Record name.
            cancel: Set by the dispatcher when the pass's deadline expires or
                the controller is shutting down.

        Returns:
            ReconcileResult describing whether and when to retry.
        """
        try:
            model = self._store.get(namespace, name)
        except NotFoundError:
            logger.debug(f"OllamaModel {namespace}/{name} no longer exists")
            return ReconcileResult()
        except OperatorError as e:
            logger.error(f"Failed to read OllamaModel {namespace}/{name}: {e}")
            return ReconcileResult(requeue_after=STORE_RETRY_DELAY, error=e)

        if model.is_being_deleted:
            logger.info(f"Handling deletion of {model.name} ({model.reference})")
            return self._handle_deletion(model, cancel)

        if not model.has_finalizer:
            logger.info(f"Adding finalizer to {model.name}")
            try:
                self._store.add_finalizer(model)
            except OperatorError as e:
                return self._store_failure(model, "add finalizer", e)
            return ReconcileResult()

        remaining = self._failure_backoff(model)
        if remaining is not None:
            logger.debug(f"{model.name} failed recently, next attempt in {remaining:.0f}s")
            return ReconcileResult(requeue_after=remaining)

        if model.refresh.requested:
            logger.info(f"Refresh requested for {model.name} ({model.reference})")
            return self._refresh(model, cancel)

        if model.status.state is None:
            logger.info(f"Initializing status of {model.name}")
            model.status.state = ModelState.PENDING
            try:
                self._store.update_status(model)
            except OperatorError as e:
                return self._store_failure(model, "initialize status", e)
            return ReconcileResult()

        try:
            self._ollama.show(model.reference)
        except ModelNotFoundError:
            return self._pull(model, cancel)
        except OllamaError as e:
            logger.error(f"Failed to inspect {model.reference}: {e}")
            return ReconcileResult(requeue_after=DAEMON_RETRY_DELAY, error=e)

        if model.status.state != ModelState.READY:
            logger.info(f"{model.reference} already present, marking {model.name} ready")
            return self._publish_details(model, cancel)

        return ReconcileResult()

    # -------------------------------------------------------------------------
    # Pull
    # -------------------------------------------------------------------------

    def _pull(self, model: OllamaModel, cancel: threading.Event | None) -> ReconcileResult:
        """Pull a model missing from the daemon."""
        if model.status.state == ModelState.READY:
            logger.warning(f"{model.reference} disappeared from the daemon, pulling again")

        logger.info(f"Starting pull of {model.reference} for {model.name}")
        model.status.state = ModelState.PULLING
        model.status.error = None
        try:
            model = self._store.update_status(model)
        except OperatorError as e:
            return self._store_failure(model, "mark pulling", e)

        try:
            self._ollama.pull(model.reference, self._progress_logger(model.reference), cancel)
        except PullCancelledError as e:
            logger.warning(f"Pull of {model.reference} interrupted, will retry: {e}")
            return ReconcileResult(requeue_after=STORE_RETRY_DELAY, error=e)
        except OllamaError as e:
            logger.error(f"Failed to pull {model.reference}: {e}")
            return self._mark_failed(model, e, EventReason.PULL_FAILED)

        logger.info(f"Pull of {model.reference} completed")
        return self._publish_details(model, cancel)

    def _progress_logger(self, reference: str) -> Callable[[PullProgress], None]:
        def on_progress(progress: PullProgress) -> None:
            logger.debug(
                f"Pull progress for {reference}: {progress.status} "
                f"({progress.completed or 0}/{progress.total or 0} bytes)"
            )

        return on_progress

    def _mark_failed(
        self, model: OllamaModel, error: Exception, reason: EventReason
    ) -> ReconcileResult:
        """Record a daemon failure in status and ask for a slow retry."""
        with self._failed_lock:
            self._failed_at[(model.namespace, model.name)] = self._clock()
        model.status.state = ModelState.FAILED
        model.status.error = truncate_error(str(error))
        self._recorder.record(
            model, EventType.WARNING, reason, f"Failed to pull {model.reference}: {error}"
        )
        try:
            self._store.update_status(model)
        except OperatorError as e:
            return self._store_failure(model, "record failure", e)
        return ReconcileResult(requeue_after=DAEMON_RETRY_DELAY, error=error)

    def _failure_backoff(self, model: OllamaModel) -> float | None:
        """Seconds left before a Failed record may contact the daemon again.

        A Failed record reaches the daemon at most once per
        DAEMON_RETRY_DELAY, however often it is enqueued.
        """
        key = (model.namespace, model.name)
        with self._failed_lock:
            failed_at = self._failed_at.get(key)
        if failed_at is None or model.status.state != ModelState.FAILED:
            return None
        remaining = DAEMON_RETRY_DELAY - (self._clock() - failed_at).total_seconds()
        return remaining if remaining > 0 else None

    def _clear_failure(self, model: OllamaModel) -> None:
        with self._failed_lock:
            self._failed_at.pop((model.namespace, model.name), None)

    # -------------------------------------------------------------------------
    # Detail refresh
    # -------------------------------------------------------------------------

    def _publish_details(
        self, model: OllamaModel, cancel: threading.Event | None
    ) -> ReconcileResult:
        try:
            self._update_details(model, cancel)
        except OperatorError as e:
            return self._store_failure(model, "publish model details", e)
        return ReconcileResult()

    def _update_details(self, model: OllamaModel, cancel: threading.Event | None) -> OllamaModel:
        """Mark the model Ready and publish its digest and size.

        Lookups of digest and size are best effort. The status write is
        retried with backoff, and the final failure is raised to the caller.
        """
        status = model.status
        status.state = ModelState.READY
        status.last_pull_time = self._clock()
        status.error = None

        try:
            details = self._ollama.show(model.reference)
        except OllamaError as e:
            logger.warning(f"Could not inspect {model.reference} for its digest: {e}")
        else:
            status.digest = digest_from_modelfile(details.modelfile)

            try:
                inventory = self._ollama.list()
            except OllamaError as e:
                logger.error(f"Failed to list models to get size of {model.reference}: {e}")
            else:
                for entry in inventory:
                    if entry.name == model.reference:
                        status.size = entry.size
                        status.formatted_size = format_size(entry.size)
                        logger.info(
                            f"Updated size of {model.reference}: {entry.size} bytes "
                            f"({status.formatted_size})"
                        )
                        break

        updated = retry_call(
            lambda: self._store.update_status(model),
            self._retry_policy,
            give_up_on=(NotFoundError,),
            sleep=self._sleep,
            cancel=cancel,
            description=f"status update for {model.name}",
        )
        self._clear_failure(model)
        self._recorder.record(
            model,
            EventType.NORMAL,
            EventReason.MODEL_READY,
            f"Model {model.reference} is ready ({status.formatted_size or 'size unknown'})",
        )
        return updated

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    def _refresh(self, model: OllamaModel, cancel: threading.Event | None) -> ReconcileResult:
        """Force a re-pull, then acknowledge the refresh marker."""
        self._recorder.record(
            model,
            EventType.NORMAL,
            EventReason.REFRESH_STARTED,
            f"Starting refresh of model {model.reference}",
        )

        model.status.state = ModelState.PULLING
        model.status.error = None
        try:
            model = self._store.update_status(model)
        except OperatorError as e:
            return self._store_failure(model, "mark pulling", e)

        progress = self._progress_logger(model.reference)
        try:
            retry_call(
                lambda: self._ollama.pull(model.reference, progress, cancel),
                self._retry_policy,
                give_up_on=(PullCancelledError,),
                sleep=self._sleep,
                cancel=cancel,
                description=f"refresh pull of {model.reference}",
            )
        except PullCancelledError as e:
            logger.warning(f"Refresh of {model.reference} interrupted, will retry: {e}")
            return ReconcileResult(requeue_after=STORE_RETRY_DELAY, error=e)
        except OllamaError as e:
            logger.error(f"Failed to refresh {model.reference} after retries: {e}")
            return self._mark_failed(model, e, EventReason.REFRESH_FAILED)

        try:
            model = self._update_details(model, cancel)
        except OperatorError as e:
            return self._store_failure(model, "publish model details", e)

        try:
            self._store.complete_refresh(model, self._clock())
        except OperatorError as e:
            return self._store_failure(model, "acknowledge refresh", e)

        self._recorder.record(
            model,
            EventType.NORMAL,
            EventReason.REFRESH_COMPLETED,
            f"Successfully refreshed model {model.reference} "
            f"(size: {model.status.formatted_size or 'unknown'})",
        )
        logger.info(f"Refresh of {model.reference} completed")
        return ReconcileResult()

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    def _handle_deletion(
        self, model: OllamaModel, cancel: threading.Event | None
    ) -> ReconcileResult:
        """Clean up the daemon's copy, then release the deletion guard.

        Daemon failures are logged but never block removal of the record.
        """
        self._clear_failure(model)
        if not model.has_finalizer:
            return ReconcileResult()

        try:
            retry_call(
                lambda: self._delete_from_daemon(model.reference),
                self._retry_policy,
                sleep=self._sleep,
                cancel=cancel,
                description=f"delete of {model.reference}",
            )
        except OllamaError as e:
            logger.error(f"Failed to delete {model.reference} from Ollama after retries: {e}")
            self._recorder.record(
                model,
                EventType.WARNING,
                EventReason.DELETE_FAILED,
                f"Failed to delete model {model.reference}: {e}",
            )
        else:
            logger.info(f"Deleted {model.reference} from Ollama")

        try:
            self._store.remove_finalizer(model)
        except NotFoundError:
            pass
        except OperatorError as e:
            return self._store_failure(model, "remove finalizer", e)
        return ReconcileResult()

    def _delete_from_daemon(self, reference: str) -> None:
        try:
            self._ollama.delete(reference)
        except ModelNotFoundError:
            logger.info(f"{reference} already absent from Ollama")

    def _store_failure(self, model: OllamaModel, action: str, error: Exception) -> ReconcileResult:
        logger.error(f"Failed to {action} for {model.name}: {error}")
        return ReconcileResult(requeue_after=STORE_RETRY_DELAY, error=error)
