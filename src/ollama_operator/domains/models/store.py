"""Typed OllamaModel operations over the Kubernetes API."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ollama_operator.domains.models.crds import (
    FINALIZER,
    REFRESH_ANNOTATION,
    REFRESH_TRIGGER,
    OllamaModelCRDs,
)
from ollama_operator.domains.models.models import (
    CreateModelRequest,
    OllamaModel,
    RefreshMarker,
)
from ollama_operator.utils.errors import NotFoundError, ResourceExistsError, ValidationError

if TYPE_CHECKING:
    from ollama_operator.clients.base import K8sClient

logger = logging.getLogger(__name__)

CRD = OllamaModelCRDs.OLLAMA_MODEL


class OllamaModelStore:
    """Desired/observed record store for OllamaModel resources.

    Metadata writes carry the record's resourceVersion, so a concurrent
    change surfaces as ConflictError instead of being overwritten.
    """

    def __init__(self, k8s: K8sClient) -> None:
        """Initialize with a K8sClient instance."""
        self._k8s = k8s

    # -------------------------------------------------------------------------
    # Read operations
    # -------------------------------------------------------------------------

    def get(self, namespace: str, name: str) -> OllamaModel:
        """Get a single OllamaModel.

        Raises:
            NotFoundError: If the resource does not exist.
        """
        return OllamaModel.from_resource(self._k8s.get(CRD, name, namespace=namespace))

    def list(self, namespace: str) -> list[OllamaModel]:
        """List OllamaModels in a namespace, ordered by name."""
        resources = self._k8s.list_resources(CRD, namespace=namespace)
        models = [OllamaModel.from_resource(r) for r in resources]
        return sorted(models, key=lambda m: m.name)

    def watch(
        self,
        namespace: str,
        resource_version: str | None = None,
        timeout_seconds: int | None = None,
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        """Stream raw change notifications for OllamaModels in a namespace."""
        return self._k8s.watch(
            CRD,
            namespace=namespace,
            resource_version=resource_version,
            timeout_seconds=timeout_seconds,
        )

    # -------------------------------------------------------------------------
    # Desired-state writes (REST / MCP surfaces)
    # -------------------------------------------------------------------------

    def create(self, namespace: str, model_name: str, tag: str) -> OllamaModel:
        """Declare a new model.

        Raises:
            ValidationError: If name or tag is blank.
            ResourceExistsError: If the derived resource name is taken.
        """
        request = CreateModelRequest(name=model_name.strip(), tag=tag.strip())
        if not request.name or not request.tag:
            raise ValidationError("name and tag are required")

        name = request.resource_name
        try:
            self.get(namespace, name)
        except NotFoundError:
            pass
        else:
            raise ResourceExistsError(CRD.kind, name, namespace)

        body = OllamaModel.build_body(name, namespace, request.name, request.tag)
        created = OllamaModel.from_resource(self._k8s.create(CRD, body=body, namespace=namespace))
        logger.info(f"Created {CRD.kind} {namespace}/{name} for {created.reference}")
        return created

    def delete(self, namespace: str, name: str) -> None:
        """Request deletion of a model.

        Raises:
            NotFoundError: If the resource does not exist.
        """
        self.get(namespace, name)
        self._k8s.delete(CRD, name, namespace=namespace)
        logger.info(f"Requested deletion of {CRD.kind} {namespace}/{name}")

    def request_refresh(self, namespace: str, name: str) -> OllamaModel:
        """Set the refresh marker so the reconciler re-pulls the model.

        Raises:
            NotFoundError: If the resource does not exist.
        """
        model = self.get(namespace, name)
        updated = self._patch_metadata(model, {"annotations": {REFRESH_ANNOTATION: REFRESH_TRIGGER}})
        logger.info(f"Requested refresh of {CRD.kind} {namespace}/{name}")
        return updated

    # -------------------------------------------------------------------------
    # Reconciler writes
    # -------------------------------------------------------------------------

    def add_finalizer(self, model: OllamaModel) -> OllamaModel:
        """Attach the deletion guard."""
        if model.has_finalizer:
            return model
        return self._patch_metadata(model, {"finalizers": [*model.finalizers, FINALIZER]})

    def remove_finalizer(self, model: OllamaModel) -> OllamaModel:
        """Detach the deletion guard so the API server can remove the record."""
        if not model.has_finalizer:
            return model
        remaining = [f for f in model.finalizers if f != FINALIZER]
        return self._patch_metadata(model, {"finalizers": remaining})

    def complete_refresh(self, model: OllamaModel, when: datetime) -> OllamaModel:
        """Acknowledge a refresh by rewriting the marker to its completed value."""
        value = RefreshMarker.completed_value(when)
        return self._patch_metadata(model, {"annotations": {REFRESH_ANNOTATION: value}})

    def update_status(self, model: OllamaModel) -> OllamaModel:
        """Persist the model's status subresource."""
        resource = self._k8s.patch_status(
            CRD, model.name, model.status.to_k8s(), namespace=model.namespace
        )
        return OllamaModel.from_resource(resource)

    def _patch_metadata(self, model: OllamaModel, metadata: dict[str, Any]) -> OllamaModel:
        body = {"metadata": {**metadata, "resourceVersion": model.resource_version}}
        resource = self._k8s.patch(CRD, model.name, body=body, namespace=model.namespace)
        return OllamaModel.from_resource(resource)
