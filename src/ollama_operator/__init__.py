"""Ollama operator - keeps Ollama models in sync with OllamaModel resources."""

__version__ = "0.1.0"
