"""Utility functions and helpers for the Ollama operator."""

from ollama_operator.utils.errors import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    OperatorError,
    ResourceExistsError,
    ValidationError,
)
from ollama_operator.utils.retry import DEFAULT_RETRY_POLICY, RetryPolicy, retry_call

__all__ = [
    # Errors
    "OperatorError",
    "NotFoundError",
    "AuthenticationError",
    "ConfigurationError",
    "ConflictError",
    "ValidationError",
    "ResourceExistsError",
    # Retry
    "RetryPolicy",
    "DEFAULT_RETRY_POLICY",
    "retry_call",
]
