"""CRD definitions and well-known keys for OllamaModel resources."""

from ollama_operator.clients.base import CRDDefinition

# Finalizer guarding external cleanup before a record is removed
FINALIZER = "ollama.smithforge.dev/finalizer"

# Annotation used to request an out-of-band re-pull
REFRESH_ANNOTATION = "ollama.smithforge.dev/refresh"
REFRESH_TRIGGER = "true"
REFRESH_COMPLETED_PREFIX = "completed-"


class OllamaModelCRDs:
    """OllamaModel CRD definitions."""

    OLLAMA_MODEL = CRDDefinition(
        group="ollama.smithforge.dev",
        version="v1alpha1",
        plural="ollamamodels",
        kind="OllamaModel",
    )

    @classmethod
    def all_crds(cls) -> list[CRDDefinition]:
        """Return all CRD definitions."""
        return [cls.OLLAMA_MODEL]
