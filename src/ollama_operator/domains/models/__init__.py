"""OllamaModel domain - declared Ollama models and their reconciliation.

Exports:
    Models:
        - OllamaModel: Desired/observed record for one model
        - OllamaModelSpec: Declared name and tag
        - OllamaModelStatus: Reconciler-owned observed state
        - ModelState: Pending, Pulling, Ready, Failed
        - RefreshMarker: Typed view of the refresh annotation
        - ModelView: API projection of a record

    Store:
        - OllamaModelStore: Typed record operations over Kubernetes

    Reconciliation:
        - OllamaModelReconciler: Per-record state machine
        - ReconcileResult: Outcome of a reconciliation pass
        - ModelController: Watch/queue/worker dispatcher
        - WorkQueue: Per-key serialized work queue

    Tools:
        - register_tools: Register MCP tools with server
"""

from ollama_operator.domains.models.controller import (
    ChangeEvent,
    ChangeType,
    ModelController,
    ObjectKey,
    WorkQueue,
)
from ollama_operator.domains.models.crds import FINALIZER, REFRESH_ANNOTATION, OllamaModelCRDs
from ollama_operator.domains.models.events import EventRecorder
from ollama_operator.domains.models.formatting import format_size
from ollama_operator.domains.models.models import (
    ModelState,
    ModelView,
    OllamaModel,
    OllamaModelSpec,
    OllamaModelStatus,
    RefreshMarker,
)
from ollama_operator.domains.models.reconciler import OllamaModelReconciler, ReconcileResult
from ollama_operator.domains.models.store import OllamaModelStore
from ollama_operator.domains.models.tools import register_tools

__all__ = [
    # Models
    "OllamaModel",
    "OllamaModelSpec",
    "OllamaModelStatus",
    "ModelState",
    "RefreshMarker",
    "ModelView",
    "OllamaModelCRDs",
    "FINALIZER",
    "REFRESH_ANNOTATION",
    "format_size",
    # Store
    "OllamaModelStore",
    "EventRecorder",
    # Reconciliation
    "OllamaModelReconciler",
    "ReconcileResult",
    "ModelController",
    "WorkQueue",
    "ChangeEvent",
    "ChangeType",
    "ObjectKey",
    # Tools
    "register_tools",
]
