"""Pydantic models for OllamaModel resources."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ollama_operator.domains.models.crds import (
    FINALIZER,
    REFRESH_ANNOTATION,
    REFRESH_COMPLETED_PREFIX,
    REFRESH_TRIGGER,
    OllamaModelCRDs,
)

# Matches the CRD's maxLength on status.error
MAX_ERROR_LENGTH = 1024

DIGEST_LENGTH = 64


class ModelState(str, Enum):
    """Observed lifecycle state of an OllamaModel."""

    PENDING = "Pending"
    PULLING = "Pulling"
    READY = "Ready"
    FAILED = "Failed"


class OllamaModelSpec(BaseModel):
    """Desired state: which model and tag should exist in the daemon."""

    name: str = Field(..., min_length=1, description="Model name (e.g., 'llama3.2')")
    tag: str = Field(..., min_length=1, description="Model tag (e.g., '1b')")

    @property
    def reference(self) -> str:
        """Get the daemon's addressing key, e.g. 'llama3.2:1b'."""
        return f"{self.name}:{self.tag}"


class OllamaModelStatus(BaseModel):
    """Observed state, written only by the reconciler."""

    model_config = ConfigDict(populate_by_name=True)

    state: ModelState | None = Field(None, description="Current lifecycle state")
    last_pull_time: datetime | None = Field(
        None, alias="lastPullTime", description="Time of the last successful pull"
    )
    digest: str | None = Field(None, description="Advisory 64-character hex digest")
    size: int | None = Field(None, ge=0, description="Model size in bytes")
    formatted_size: str | None = Field(
        None, alias="formattedSize", description="Human-readable size"
    )
    error: str | None = Field(None, description="Error from the most recent failure")

    @field_validator("state", mode="before")
    @classmethod
    def _empty_state_is_unset(cls, value: Any) -> Any:
        return value or None

    def to_k8s(self) -> dict[str, Any]:
        """Serialize for a status merge-patch.

        Unset fields are emitted as null so the patch clears them.
        """
        return {
            "state": self.state.value if self.state else None,
            "lastPullTime": _format_time(self.last_pull_time),
            "digest": self.digest,
            "size": self.size,
            "formattedSize": self.formatted_size,
            "error": self.error,
        }


class RefreshMarker(BaseModel):
    """Typed view of the refresh annotation.

    The trigger value ``true`` requests a re-pull; the reconciler acknowledges
    by rewriting it to ``completed-<RFC3339>``, which never matches the
    trigger again.
    """

    requested: bool = Field(False, description="A refresh has been requested")
    completed_at: datetime | None = Field(None, description="When the last refresh completed")

    @classmethod
    def from_annotations(cls, annotations: dict[str, str]) -> RefreshMarker:
        """Parse the marker from resource annotations."""
        value = annotations.get(REFRESH_ANNOTATION)
        if value is None:
            return cls()
        if value == REFRESH_TRIGGER:
            return cls(requested=True)
        if value.startswith(REFRESH_COMPLETED_PREFIX):
            try:
                completed = datetime.fromisoformat(
                    value[len(REFRESH_COMPLETED_PREFIX) :].replace("Z", "+00:00")
                )
            except ValueError:
                completed = None
            return cls(completed_at=completed)
        return cls()

    @staticmethod
    def completed_value(when: datetime) -> str:
        """Build the acknowledgment value for a refresh completed at ``when``."""
        return f"{REFRESH_COMPLETED_PREFIX}{_format_time(when)}"


class OllamaModel(BaseModel):
    """OllamaModel resource representation."""

    name: str = Field(..., description="Resource name")
    namespace: str = Field(..., description="Resource namespace")
    uid: str | None = Field(None, description="Kubernetes UID")
    resource_version: str | None = Field(None, description="Optimistic concurrency token")
    deletion_timestamp: datetime | None = Field(None, description="Set once deletion is requested")
    creation_timestamp: datetime | None = Field(None, description="When the resource was created")
    finalizers: list[str] = Field(default_factory=list, description="Deletion guard tokens")
    annotations: dict[str, str] = Field(default_factory=dict, description="Resource annotations")
    spec: OllamaModelSpec
    status: OllamaModelStatus = Field(default_factory=OllamaModelStatus)

    @property
    def reference(self) -> str:
        """Get the daemon's addressing key for this model."""
        return self.spec.reference

    @property
    def is_being_deleted(self) -> bool:
        """Check if the resource has been marked for deletion."""
        return self.deletion_timestamp is not None

    @property
    def has_finalizer(self) -> bool:
        """Check if the deletion guard is attached."""
        return FINALIZER in self.finalizers

    @property
    def refresh(self) -> RefreshMarker:
        """Get the parsed refresh marker."""
        return RefreshMarker.from_annotations(self.annotations)

    def to_source_dict(self) -> dict[str, Any]:
        """Return _source metadata for grounding responses to K8s resources."""
        return {
            "kind": OllamaModelCRDs.OLLAMA_MODEL.kind,
            "api_version": OllamaModelCRDs.OLLAMA_MODEL.api_version,
            "name": self.name,
            "namespace": self.namespace,
            "uid": self.uid,
        }

    def to_object_reference(self) -> dict[str, Any]:
        """Build a core/v1 ObjectReference for events about this resource."""
        return {
            "apiVersion": OllamaModelCRDs.OLLAMA_MODEL.api_version,
            "kind": OllamaModelCRDs.OLLAMA_MODEL.kind,
            "name": self.name,
            "namespace": self.namespace,
            "uid": self.uid,
            "resourceVersion": self.resource_version,
        }

    @classmethod
    def from_resource(cls, resource: Any) -> OllamaModel:
        """Create from a dynamic-client ResourceInstance or a raw dict."""
        data = resource.to_dict() if hasattr(resource, "to_dict") else dict(resource)
        metadata = data.get("metadata") or {}
        spec = data.get("spec") or {}
        status = data.get("status") or {}

        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            uid=metadata.get("uid"),
            resource_version=metadata.get("resourceVersion"),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            creation_timestamp=metadata.get("creationTimestamp"),
            finalizers=list(metadata.get("finalizers") or []),
            annotations=dict(metadata.get("annotations") or {}),
            spec=OllamaModelSpec(name=spec.get("name", ""), tag=spec.get("tag", "")),
            status=OllamaModelStatus.model_validate(status),
        )

    @classmethod
    def build_body(cls, name: str, namespace: str, model_name: str, tag: str) -> dict[str, Any]:
        """Build the manifest for a new OllamaModel."""
        crd = OllamaModelCRDs.OLLAMA_MODEL
        return {
            "apiVersion": crd.api_version,
            "kind": crd.kind,
            "metadata": {"name": name, "namespace": namespace},
            "spec": {"name": model_name, "tag": tag},
        }


class ModelView(BaseModel):
    """Projection of an OllamaModel returned by the REST and MCP surfaces."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    name: str
    namespace: str
    model_name: str = Field(..., alias="modelName")
    tag: str
    state: str = ""
    size: int | None = None
    formatted_size: str | None = Field(None, alias="formattedSize")
    last_pull_time: str | None = Field(None, alias="lastPullTime")
    last_refresh_time: str | None = Field(None, alias="lastRefreshTime")
    error: str | None = None

    @classmethod
    def from_model(cls, model: OllamaModel) -> ModelView:
        """Project an OllamaModel into its API view."""
        status = model.status
        return cls(
            name=model.name,
            namespace=model.namespace,
            model_name=model.spec.name,
            tag=model.spec.tag,
            state=status.state.value if status.state else "",
            size=status.size or None,
            formatted_size=status.formatted_size or None,
            last_pull_time=_format_time(status.last_pull_time),
            last_refresh_time=_format_time(model.refresh.completed_at),
            error=status.error or None,
        )

    def to_response(self) -> dict[str, Any]:
        """Serialize using camelCase keys, omitting empty optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class CreateModelRequest(BaseModel):
    """Request body for creating an OllamaModel."""

    name: str = ""
    tag: str = ""

    @property
    def resource_name(self) -> str:
        """Derive the resource name, e.g. 'llama3.2-1b'."""
        return derive_resource_name(self.name, self.tag)


def derive_resource_name(model_name: str, tag: str) -> str:
    """Derive a resource name from a model name and tag."""
    return f"{model_name}-{tag}"


def digest_from_modelfile(modelfile: str) -> str | None:
    """Derive the advisory digest from daemon-reported Modelfile content.

    The content is hex-encoded and truncated to 64 characters. Content too
    short to fill 64 hex characters yields no digest rather than a padded one.
    This is not a cryptographic hash of the model weights.
    """
    if not modelfile:
        return None
    encoded = modelfile.encode("utf-8").hex()
    if len(encoded) < DIGEST_LENGTH:
        return None
    return encoded[:DIGEST_LENGTH]


def truncate_error(message: str) -> str:
    """Bound an error message to the length the CRD accepts."""
    if len(message) <= MAX_ERROR_LENGTH:
        return message
    return message[: MAX_ERROR_LENGTH - 3] + "..."


def utcnow() -> datetime:
    """Get the current UTC time truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _format_time(value: datetime | None) -> str | None:
    """Format a datetime as RFC3339 with a Z suffix."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
