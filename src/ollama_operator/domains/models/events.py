"""Kubernetes Event recording for OllamaModel lifecycle transitions."""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any

from ollama_operator.domains.models.models import OllamaModel, utcnow

if TYPE_CHECKING:
    from ollama_operator.clients.base import K8sClient

logger = logging.getLogger(__name__)

COMPONENT = "ollama-operator"


class EventType(str, Enum):
    """Kubernetes Event types."""

    NORMAL = "Normal"
    WARNING = "Warning"


class EventReason(str, Enum):
    """Reasons recorded against OllamaModel resources."""

    MODEL_READY = "ModelReady"
    PULL_FAILED = "PullFailed"
    DELETE_FAILED = "DeleteFailed"
    REFRESH_STARTED = "RefreshStarted"
    REFRESH_FAILED = "RefreshFailed"
    REFRESH_COMPLETED = "RefreshCompleted"


class EventRecorder:
    """Emits core/v1 Events. Recording failures are logged and never raised."""

    def __init__(self, k8s: K8sClient) -> None:
        self._k8s = k8s

    def record(
        self,
        model: OllamaModel,
        event_type: EventType,
        reason: EventReason,
        message: str,
    ) -> None:
        """Record an event against a model resource."""
        try:
            self._k8s.create_event(model.namespace, self._build_body(model, event_type, reason, message))
        except Exception as e:
            logger.warning(f"Failed to record {reason.value} event for {model.name}: {e}")

    @staticmethod
    def _build_body(
        model: OllamaModel, event_type: EventType, reason: EventReason, message: str
    ) -> dict[str, Any]:
        now = utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")
        return {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {
                "name": f"{model.name}.{uuid.uuid4().hex[:16]}",
                "namespace": model.namespace,
            },
            "involvedObject": model.to_object_reference(),
            "type": event_type.value,
            "reason": reason.value,
            "message": message,
            "source": {"component": COMPONENT},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }


class NullEventRecorder(EventRecorder):
    """Recorder that drops events, for use without a Kubernetes connection."""

    def __init__(self) -> None:
        pass

    def record(
        self,
        model: OllamaModel,
        event_type: EventType,
        reason: EventReason,
        message: str,
    ) -> None:
        logger.debug(f"{event_type.value} {reason.value} {model.name}: {message}")
