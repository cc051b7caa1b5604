"""Shared fixtures: in-memory record store and Ollama daemon fakes."""

import time
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest

from ollama_operator.clients.ollama import (
    ListedModel,
    ModelDetails,
    ModelNotFoundError,
    PullCancelledError,
    PullProgress,
)
from ollama_operator.domains.models.crds import FINALIZER, REFRESH_ANNOTATION, REFRESH_TRIGGER
from ollama_operator.domains.models.models import (
    CreateModelRequest,
    ModelState,
    OllamaModel,
    OllamaModelSpec,
    OllamaModelStatus,
    RefreshMarker,
)
from ollama_operator.domains.models.reconciler import OllamaModelReconciler
from ollama_operator.utils.errors import (
    ConflictError,
    NotFoundError,
    ResourceExistsError,
    ValidationError,
)

FIXED_NOW = datetime(2025, 1, 15, 10, 30, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Wall clock that only moves when a test advances it."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeModelStore:
    """In-memory stand-in for OllamaModelStore.

    Mirrors the Kubernetes semantics the reconciler relies on: two-phase
    deletion while a finalizer is attached, resourceVersion checks on
    metadata writes, and a status subresource that ignores versions.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], OllamaModel] = {}
        self._version = 0
        self.status_history: list[OllamaModelStatus] = []
        self.status_failures: list[Exception] = []
        self.read_failures: list[Exception] = []
        self.metadata_writes = 0
        self.watch_events: list[tuple[str, dict[str, Any]]] = []

    # Test helpers

    def seed(
        self,
        name: str = "llama3.2-1b",
        model_name: str = "llama3.2",
        tag: str = "1b",
        namespace: str = "default",
        state: ModelState | None = None,
        finalizer: bool = True,
        annotations: dict[str, str] | None = None,
        size: int | None = None,
        formatted_size: str | None = None,
    ) -> OllamaModel:
        model = OllamaModel(
            name=name,
            namespace=namespace,
            uid=f"uid-{name}",
            finalizers=[FINALIZER] if finalizer else [],
            annotations=annotations or {},
            spec=OllamaModelSpec(name=model_name, tag=tag),
            status=OllamaModelStatus(state=state, size=size, formatted_size=formatted_size),
        )
        return self._save(model)

    def record(self, name: str = "llama3.2-1b", namespace: str = "default") -> OllamaModel | None:
        stored = self._records.get((namespace, name))
        return stored.model_copy(deep=True) if stored else None

    def states(self) -> list[ModelState | None]:
        return [s.state for s in self.status_history]

    def _save(self, model: OllamaModel) -> OllamaModel:
        self._version += 1
        model.resource_version = str(self._version)
        self._records[(model.namespace, model.name)] = model.model_copy(deep=True)
        return model.model_copy(deep=True)

    def _stored(self, namespace: str, name: str) -> OllamaModel:
        stored = self._records.get((namespace, name))
        if stored is None:
            raise NotFoundError("OllamaModel", name, namespace)
        return stored.model_copy(deep=True)

    # Store interface

    def get(self, namespace: str, name: str) -> OllamaModel:
        if self.read_failures:
            raise self.read_failures.pop(0)
        return self._stored(namespace, name)

    def list(self, namespace: str) -> list[OllamaModel]:
        models = [m.model_copy(deep=True) for (ns, _), m in self._records.items() if ns == namespace]
        return sorted(models, key=lambda m: m.name)

    def watch(
        self,
        namespace: str,
        resource_version: str | None = None,
        timeout_seconds: int | None = None,
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        events, self.watch_events = self.watch_events, []
        if not events:
            # Stand-in for the server-side watch timeout
            time.sleep(0.01)
        yield from events

    def create(self, namespace: str, model_name: str, tag: str) -> OllamaModel:
        request = CreateModelRequest(name=model_name.strip(), tag=tag.strip())
        if not request.name or not request.tag:
            raise ValidationError("name and tag are required")
        if (namespace, request.resource_name) in self._records:
            raise ResourceExistsError("OllamaModel", request.resource_name, namespace)
        return self.seed(
            request.resource_name, request.name, request.tag, namespace, finalizer=False
        )

    def delete(self, namespace: str, name: str) -> None:
        model = self._stored(namespace, name)
        if model.finalizers:
            model.deletion_timestamp = FIXED_NOW
            self._save(model)
        else:
            del self._records[(namespace, name)]

    def request_refresh(self, namespace: str, name: str) -> OllamaModel:
        model = self._stored(namespace, name)
        model.annotations[REFRESH_ANNOTATION] = REFRESH_TRIGGER
        return self._save(model)

    def add_finalizer(self, model: OllamaModel) -> OllamaModel:
        if model.has_finalizer:
            return model
        return self._patch_metadata(model, finalizers=[*model.finalizers, FINALIZER])

    def remove_finalizer(self, model: OllamaModel) -> OllamaModel:
        if not model.has_finalizer:
            return model
        remaining = [f for f in model.finalizers if f != FINALIZER]
        return self._patch_metadata(model, finalizers=remaining)

    def complete_refresh(self, model: OllamaModel, when: datetime) -> OllamaModel:
        annotations = {**model.annotations, REFRESH_ANNOTATION: RefreshMarker.completed_value(when)}
        return self._patch_metadata(model, annotations=annotations)

    def update_status(self, model: OllamaModel) -> OllamaModel:
        if self.status_failures:
            raise self.status_failures.pop(0)
        stored = self._stored(model.namespace, model.name)
        stored.status = model.status.model_copy(deep=True)
        self.status_history.append(stored.status.model_copy(deep=True))
        return self._save(stored)

    def _patch_metadata(self, model: OllamaModel, **changes: Any) -> OllamaModel:
        stored = self._stored(model.namespace, model.name)
        if stored.resource_version != model.resource_version:
            raise ConflictError("OllamaModel", model.name, model.namespace)
        self.metadata_writes += 1
        updated = stored.model_copy(update=changes, deep=True)
        if updated.is_being_deleted and not updated.finalizers:
            del self._records[(model.namespace, model.name)]
            return updated
        return self._save(updated)


class FakeOllama:
    """In-memory Ollama daemon with scriptable failures."""

    def __init__(self) -> None:
        self.inventory: dict[str, int] = {}
        self.pull_sizes: dict[str, int] = {}
        self.pull_errors: list[Exception] = []
        self.show_errors: list[Exception] = []
        self.delete_errors: list[Exception] = []
        self.list_errors: list[Exception] = []
        self.calls: list[tuple[str, str]] = []
        self.progress: list[PullProgress] = []

    def calls_to(self, operation: str) -> list[str]:
        return [name for op, name in self.calls if op == operation]

    def show(self, name: str) -> ModelDetails:
        self.calls.append(("show", name))
        if self.show_errors:
            raise self.show_errors.pop(0)
        if name not in self.inventory:
            raise ModelNotFoundError(name)
        return ModelDetails(modelfile=f'# Modelfile generated by "ollama show"\nFROM {name}\n')

    def pull(
        self,
        name: str,
        on_progress: Callable[[PullProgress], None] | None = None,
        cancel: Any = None,
    ) -> None:
        self.calls.append(("pull", name))
        if cancel is not None and cancel.is_set():
            raise PullCancelledError(name)
        if self.pull_errors:
            raise self.pull_errors.pop(0)
        for update in (
            PullProgress(status="pulling manifest"),
            PullProgress(status="pulling 74701a8c35f6", total=1000, completed=1000),
            PullProgress(status="success"),
        ):
            self.progress.append(update)
            if on_progress is not None:
                on_progress(update)
        self.inventory[name] = self.pull_sizes.get(name, 1_321_098_329)

    def delete(self, name: str) -> None:
        self.calls.append(("delete", name))
        if self.delete_errors:
            raise self.delete_errors.pop(0)
        if name not in self.inventory:
            raise ModelNotFoundError(name)
        del self.inventory[name]

    def list(self) -> list[ListedModel]:
        self.calls.append(("list", ""))
        if self.list_errors:
            raise self.list_errors.pop(0)
        return [ListedModel(name=name, size=size) for name, size in self.inventory.items()]


@pytest.fixture
def fake_store() -> FakeModelStore:
    """Create an empty in-memory record store."""
    return FakeModelStore()


@pytest.fixture
def fake_ollama() -> FakeOllama:
    """Create an empty in-memory Ollama daemon."""
    return FakeOllama()


@pytest.fixture
def sleeps() -> list[float]:
    """Collect backoff delays instead of sleeping."""
    return []


@pytest.fixture
def clock() -> FrozenClock:
    """Create a clock frozen at FIXED_NOW."""
    return FrozenClock()


@pytest.fixture
def recorder() -> MagicMock:
    """Create a mock EventRecorder."""
    return MagicMock()


@pytest.fixture
def reconciler(
    fake_store: FakeModelStore,
    fake_ollama: FakeOllama,
    recorder: MagicMock,
    sleeps: list[float],
    clock: FrozenClock,
) -> OllamaModelReconciler:
    """Create a reconciler wired to the fakes with a frozen clock."""
    return OllamaModelReconciler(
        fake_store,  # type: ignore[arg-type]
        fake_ollama,
        recorder=recorder,
        sleep=sleeps.append,
        clock=clock,
    )
