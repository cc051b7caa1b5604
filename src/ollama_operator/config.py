"""Configuration for the Ollama operator."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TransportMode(str, Enum):
    """MCP transport used by the server process."""

    STDIO = "stdio"
    SSE = "sse"
    STREAMABLE_HTTP = "streamable-http"


class AuthMode(str, Enum):
    """How the operator authenticates to the Kubernetes API."""

    AUTO = "auto"
    KUBECONFIG = "kubeconfig"
    TOKEN = "token"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class OperatorConfig(BaseSettings):
    """Configuration for the Ollama operator.

    Loaded from environment variables with OLLAMA_OPERATOR_ prefix
    or from a .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="OLLAMA_OPERATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Records
    namespace: str = Field(
        default="default",
        description="Namespace holding OllamaModel resources",
    )

    # Ollama daemon
    ollama_url: str = Field(
        default="http://localhost:11434",
        description="Base URL of the Ollama daemon",
    )
    ollama_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for non-streaming Ollama calls",
    )

    # HTTP surface
    host: str = Field(default="0.0.0.0", description="Host to bind the HTTP server to")
    port: int = Field(default=8080, ge=1, le=65535, description="Port for the HTTP server")
    transport: TransportMode = Field(
        default=TransportMode.STREAMABLE_HTTP,
        description="MCP transport; the REST API is only served over HTTP transports",
    )
    api_key: str | None = Field(
        default=None,
        description="Static key required in X-API-Key for /api/v1 routes",
    )
    enable_api: bool = Field(default=True, description="Serve the REST API routes")

    # Kubernetes
    auth_mode: AuthMode = Field(default=AuthMode.AUTO, description="Kubernetes auth mode")
    kubeconfig_path: str | None = Field(default=None, description="Path to kubeconfig file")
    kubeconfig_context: str | None = Field(default=None, description="Kubeconfig context")
    api_server: str | None = Field(default=None, description="API server URL (token mode)")
    api_token: str | None = Field(default=None, description="Bearer token (token mode)")

    # Controller
    enable_controller: bool = Field(default=True, description="Run the reconciliation loop")
    workers: int = Field(default=2, ge=1, le=32, description="Parallel reconciliations")
    reconcile_timeout: float = Field(
        default=1800.0,
        gt=0,
        description="Deadline in seconds for a single reconciliation pass",
    )
    resync_period: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between full re-lists of OllamaModel resources",
    )
    watch_timeout: int = Field(
        default=300,
        ge=1,
        description="Server-side timeout in seconds for a single watch request",
    )

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")

    @property
    def api_key_required(self) -> bool:
        """Check if REST routes require an API key."""
        return bool(self.api_key)

    def validate_auth_config(self) -> list[str]:
        """Validate Kubernetes auth settings.

        Returns:
            List of warning messages.

        Raises:
            ValueError: If the configuration cannot work.
        """
        warnings: list[str] = []

        if self.auth_mode == AuthMode.TOKEN:
            if not self.api_server or not self.api_token:
                raise ValueError("auth_mode 'token' requires both api_server and api_token")

        if self.auth_mode == AuthMode.KUBECONFIG and self.kubeconfig_path:
            if not Path(self.kubeconfig_path).expanduser().exists():
                raise ValueError(f"kubeconfig not found: {self.kubeconfig_path}")

        if self.auth_mode != AuthMode.TOKEN and (self.api_server or self.api_token):
            warnings.append("api_server/api_token are ignored unless auth_mode is 'token'")

        if self.transport == TransportMode.STDIO and self.enable_api:
            warnings.append("REST API is not served with stdio transport")

        if self.enable_api and not self.api_key_required:
            warnings.append("No API key configured; REST API write endpoints are unauthenticated")

        return warnings


@lru_cache
def get_config() -> OperatorConfig:
    """Get the process-wide operator configuration."""
    return OperatorConfig()
