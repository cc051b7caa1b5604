"""Tests for OllamaModelStore."""

from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest

from ollama_operator.domains.models.crds import FINALIZER, REFRESH_ANNOTATION, OllamaModelCRDs
from ollama_operator.domains.models.models import ModelState
from ollama_operator.domains.models.store import OllamaModelStore
from ollama_operator.utils.errors import NotFoundError, ResourceExistsError, ValidationError

CRD = OllamaModelCRDs.OLLAMA_MODEL


def _make_resource(
    name: str = "llama3.2-1b",
    namespace: str = "default",
    model_name: str = "llama3.2",
    tag: str = "1b",
    resource_version: str = "100",
    finalizers: list[str] | None = None,
    annotations: dict[str, str] | None = None,
    status: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a raw OllamaModel resource dict."""
    return {
        "apiVersion": "ollama.smithforge.dev/v1alpha1",
        "kind": "OllamaModel",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}",
            "resourceVersion": resource_version,
            "finalizers": finalizers or [],
            "annotations": annotations or {},
        },
        "spec": {"name": model_name, "tag": tag},
        "status": status or {},
    }


class TestOllamaModelStore:
    """Test OllamaModelStore operations."""

    @pytest.fixture
    def mock_k8s(self) -> MagicMock:
        """Create a mock K8sClient."""
        return MagicMock()

    @pytest.fixture
    def store(self, mock_k8s: MagicMock) -> OllamaModelStore:
        """Create an OllamaModelStore with mocked K8sClient."""
        return OllamaModelStore(mock_k8s)

    def test_get(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test getting a record parses spec and status."""
        mock_k8s.get.return_value = _make_resource(
            status={"state": "Ready", "size": 2048, "formattedSize": "2.0 KiB"}
        )

        model = store.get("default", "llama3.2-1b")

        mock_k8s.get.assert_called_once_with(CRD, "llama3.2-1b", namespace="default")
        assert model.reference == "llama3.2:1b"
        assert model.status.state == ModelState.READY
        assert model.status.formatted_size == "2.0 KiB"
        assert model.resource_version == "100"

    def test_get_not_found(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test NotFoundError propagates from the client."""
        mock_k8s.get.side_effect = NotFoundError("OllamaModel", "missing", "default")

        with pytest.raises(NotFoundError):
            store.get("default", "missing")

    def test_list_sorted_by_name(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test listing returns records ordered by name."""
        mock_k8s.list_resources.return_value = [
            _make_resource("qwen2.5-7b", model_name="qwen2.5", tag="7b"),
            _make_resource("llama3.2-1b"),
        ]

        models = store.list("default")

        assert [m.name for m in models] == ["llama3.2-1b", "qwen2.5-7b"]
        mock_k8s.list_resources.assert_called_once_with(CRD, namespace="default")

    def test_create(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test creating derives the name and builds the manifest."""
        mock_k8s.get.side_effect = NotFoundError("OllamaModel", "llama3.2-1b", "default")
        mock_k8s.create.return_value = _make_resource()

        model = store.create("default", " llama3.2 ", "1b")

        body = mock_k8s.create.call_args.kwargs["body"]
        assert body["metadata"] == {"name": "llama3.2-1b", "namespace": "default"}
        assert body["spec"] == {"name": "llama3.2", "tag": "1b"}
        assert body["kind"] == "OllamaModel"
        assert model.name == "llama3.2-1b"
        assert model.status.state is None

    def test_create_existing(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test creating a duplicate is rejected without writing."""
        mock_k8s.get.return_value = _make_resource()

        with pytest.raises(ResourceExistsError):
            store.create("default", "llama3.2", "1b")

        mock_k8s.create.assert_not_called()

    @pytest.mark.parametrize(("name", "tag"), [("", "1b"), ("llama3.2", "  ")])
    def test_create_blank_fields(
        self, store: OllamaModelStore, mock_k8s: MagicMock, name: str, tag: str
    ) -> None:
        """Test blank name or tag is a validation error."""
        with pytest.raises(ValidationError):
            store.create("default", name, tag)

        mock_k8s.get.assert_not_called()

    def test_delete(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test deletion checks existence first."""
        mock_k8s.get.return_value = _make_resource()

        store.delete("default", "llama3.2-1b")

        mock_k8s.delete.assert_called_once_with(CRD, "llama3.2-1b", namespace="default")

    def test_delete_missing(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test deleting a missing record raises NotFoundError."""
        mock_k8s.get.side_effect = NotFoundError("OllamaModel", "missing", "default")

        with pytest.raises(NotFoundError):
            store.delete("default", "missing")

        mock_k8s.delete.assert_not_called()

    def test_request_refresh(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test refresh sets the trigger annotation with a version check."""
        mock_k8s.get.return_value = _make_resource(resource_version="7")
        mock_k8s.patch.return_value = _make_resource(annotations={REFRESH_ANNOTATION: "true"})

        model = store.request_refresh("default", "llama3.2-1b")

        mock_k8s.patch.assert_called_once_with(
            CRD,
            "llama3.2-1b",
            body={
                "metadata": {
                    "annotations": {REFRESH_ANNOTATION: "true"},
                    "resourceVersion": "7",
                }
            },
            namespace="default",
        )
        assert model.refresh.requested

    def test_add_finalizer(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test the guard is appended to existing finalizers."""
        mock_k8s.get.return_value = _make_resource(finalizers=["other/finalizer"])
        model = store.get("default", "llama3.2-1b")
        mock_k8s.patch.return_value = _make_resource(finalizers=["other/finalizer", FINALIZER])

        updated = store.add_finalizer(model)

        body = mock_k8s.patch.call_args.kwargs["body"]
        assert body["metadata"]["finalizers"] == ["other/finalizer", FINALIZER]
        assert body["metadata"]["resourceVersion"] == "100"
        assert updated.has_finalizer

    def test_add_finalizer_already_present(
        self, store: OllamaModelStore, mock_k8s: MagicMock
    ) -> None:
        """Test attaching an existing guard does not write."""
        mock_k8s.get.return_value = _make_resource(finalizers=[FINALIZER])
        model = store.get("default", "llama3.2-1b")

        assert store.add_finalizer(model) is model
        mock_k8s.patch.assert_not_called()

    def test_remove_finalizer_keeps_others(
        self, store: OllamaModelStore, mock_k8s: MagicMock
    ) -> None:
        """Test only our guard is removed."""
        mock_k8s.get.return_value = _make_resource(finalizers=[FINALIZER, "other/finalizer"])
        model = store.get("default", "llama3.2-1b")
        mock_k8s.patch.return_value = _make_resource(finalizers=["other/finalizer"])

        store.remove_finalizer(model)

        body = mock_k8s.patch.call_args.kwargs["body"]
        assert body["metadata"]["finalizers"] == ["other/finalizer"]

    def test_complete_refresh(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test the marker is rewritten to its completed value."""
        mock_k8s.get.return_value = _make_resource(annotations={REFRESH_ANNOTATION: "true"})
        model = store.get("default", "llama3.2-1b")
        mock_k8s.patch.return_value = _make_resource()

        store.complete_refresh(model, datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc))

        body = mock_k8s.patch.call_args.kwargs["body"]
        assert body["metadata"]["annotations"] == {
            REFRESH_ANNOTATION: "completed-2025-01-15T10:30:00Z"
        }

    def test_update_status(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test status is merge-patched with nulls for unset fields."""
        mock_k8s.get.return_value = _make_resource()
        model = store.get("default", "llama3.2-1b")
        model.status.state = ModelState.FAILED
        model.status.error = "pull failed"
        mock_k8s.patch_status.return_value = _make_resource(
            status={"state": "Failed", "error": "pull failed"}
        )

        updated = store.update_status(model)

        mock_k8s.patch_status.assert_called_once_with(
            CRD,
            "llama3.2-1b",
            {
                "state": "Failed",
                "lastPullTime": None,
                "digest": None,
                "size": None,
                "formattedSize": None,
                "error": "pull failed",
            },
            namespace="default",
        )
        assert updated.status.state == ModelState.FAILED

    def test_watch_delegates(self, store: OllamaModelStore, mock_k8s: MagicMock) -> None:
        """Test watch passes the resume point and timeout through."""
        mock_k8s.watch.return_value = iter([("ADDED", _make_resource())])

        events = list(store.watch("default", resource_version="5", timeout_seconds=60))

        assert events[0][0] == "ADDED"
        mock_k8s.watch.assert_called_once_with(
            CRD, namespace="default", resource_version="5", timeout_seconds=60
        )
