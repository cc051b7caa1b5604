"""Clients for the Kubernetes API and the Ollama daemon."""

from ollama_operator.clients.base import CRDDefinition, K8sClient
from ollama_operator.clients.ollama import (
    ListedModel,
    ModelDetails,
    ModelNotFoundError,
    OllamaClient,
    OllamaConnectionError,
    OllamaError,
    PullCancelledError,
    PullProgress,
    RegistryClient,
)

__all__ = [
    "CRDDefinition",
    "K8sClient",
    "OllamaClient",
    "RegistryClient",
    "ModelDetails",
    "ListedModel",
    "PullProgress",
    "OllamaError",
    "ModelNotFoundError",
    "OllamaConnectionError",
    "PullCancelledError",
]
