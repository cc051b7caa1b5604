"""REST API for OllamaModel resources."""

from ollama_operator.api.metrics import InMemoryRequestMetrics, RequestMetrics
from ollama_operator.api.routes import API_PREFIX, register_routes

__all__ = [
    "API_PREFIX",
    "InMemoryRequestMetrics",
    "RequestMetrics",
    "register_routes",
]
