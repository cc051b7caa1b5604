"""Error taxonomy for the Ollama operator."""


class OperatorError(Exception):
    """Base exception for operator errors."""

    pass


class NotFoundError(OperatorError):
    """Resource was not found."""

    def __init__(self, kind: str, name: str, namespace: str | None = None) -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        location = f" in namespace '{namespace}'" if namespace else ""
        super().__init__(f"{kind} '{name}' not found{location}")


class ResourceExistsError(OperatorError):
    """Resource already exists."""

    def __init__(self, kind: str, name: str, namespace: str | None = None) -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        location = f" in namespace '{namespace}'" if namespace else ""
        super().__init__(f"{kind} '{name}' already exists{location}")


class ConflictError(OperatorError):
    """Optimistic concurrency check failed; the resource changed underneath us."""

    def __init__(self, kind: str, name: str, namespace: str | None = None) -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        super().__init__(f"{kind} '{name}' was modified concurrently, re-read and retry")


class ValidationError(OperatorError):
    """Request failed validation."""

    pass


class AuthenticationError(OperatorError):
    """Authentication against a backing service failed."""

    pass


class ConfigurationError(OperatorError):
    """Operator configuration is invalid or incomplete."""

    pass
