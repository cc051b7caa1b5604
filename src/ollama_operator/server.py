"""FastMCP server hosting the Ollama operator."""

from __future__ import annotations

import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from ollama_operator import __version__
from ollama_operator.api import InMemoryRequestMetrics, RequestMetrics, register_routes
from ollama_operator.clients.base import K8sClient
from ollama_operator.clients.ollama import OllamaClient, OllamaError
from ollama_operator.config import OperatorConfig, get_config
from ollama_operator.domains.models import (
    EventRecorder,
    ModelController,
    OllamaModelReconciler,
    OllamaModelStore,
    register_tools,
)

logger = logging.getLogger(__name__)


class OperatorServer:
    """Ollama operator: reconciliation loop plus MCP and REST surfaces."""

    def __init__(
        self,
        config: OperatorConfig | None = None,
        metrics: RequestMetrics | None = None,
    ) -> None:
        self._config = config or get_config()
        self._metrics = metrics or InMemoryRequestMetrics()
        self._k8s_client: K8sClient | None = None
        self._store: OllamaModelStore | None = None
        self._ollama: OllamaClient | None = None
        self._controller: ModelController | None = None
        self._mcp: FastMCP | None = None

    @property
    def config(self) -> OperatorConfig:
        """Get server configuration."""
        return self._config

    @property
    def metrics(self) -> RequestMetrics:
        """Get the request metrics sink."""
        return self._metrics

    @property
    def k8s(self) -> K8sClient:
        """Get the Kubernetes client.

        Raises:
            RuntimeError: If server is not running.
        """
        if self._k8s_client is None:
            raise RuntimeError("Server not running. K8s client not available.")
        return self._k8s_client

    @property
    def store(self) -> OllamaModelStore:
        """Get the OllamaModel record store.

        Raises:
            RuntimeError: If server is not running.
        """
        if self._store is None:
            raise RuntimeError("Server not running. Model store not available.")
        return self._store

    @property
    def controller(self) -> ModelController | None:
        """Get the reconciliation controller, if one is running."""
        return self._controller

    @property
    def mcp(self) -> FastMCP:
        """Get the MCP server instance.

        Raises:
            RuntimeError: If server is not initialized.
        """
        if self._mcp is None:
            raise RuntimeError("Server not initialized.")
        return self._mcp

    @property
    def is_ready(self) -> bool:
        """Check if the server can serve record operations."""
        return self._k8s_client is not None and self._k8s_client.is_connected

    def startup(self) -> None:
        """Connect to Kubernetes and start the controller.

        A pre-injected client that is already connected is kept as is.
        """
        if self._k8s_client is None or not self._k8s_client.is_connected:
            self._k8s_client = K8sClient(self._config)
            self._k8s_client.connect()

        if self._store is None:
            self._store = OllamaModelStore(self._k8s_client)

        if self._config.enable_controller and self._controller is None:
            self._controller = self._create_controller(self._store)
            self._controller.start()

        logger.info(
            f"Ollama operator started in namespace '{self._config.namespace}' "
            f"(controller {'enabled' if self._controller else 'disabled'})"
        )

    def shutdown(self) -> None:
        """Stop the controller and release clients."""
        logger.info("Shutting down Ollama operator...")
        if self._controller is not None:
            self._controller.stop()
            self._controller = None
        if self._ollama is not None:
            self._ollama.close()
            self._ollama = None
        if self._k8s_client is not None:
            self._k8s_client.disconnect()
            self._k8s_client = None
        self._store = None
        logger.info("Ollama operator shut down")

    def _create_controller(self, store: OllamaModelStore) -> ModelController:
        self._ollama = OllamaClient(self._config.ollama_url, self._config.ollama_timeout)
        reconciler = OllamaModelReconciler(
            store,
            self._ollama,
            recorder=EventRecorder(self.k8s),
        )
        return ModelController(
            store,
            reconciler,
            namespace=self._config.namespace,
            workers=self._config.workers,
            reconcile_timeout=self._config.reconcile_timeout,
            resync_period=self._config.resync_period,
            watch_timeout=self._config.watch_timeout,
        )

    def create_mcp(self) -> FastMCP:
        """Create and configure the FastMCP server."""
        # Host/port configured for container networking (0.0.0.0 allows external access)
        mcp = FastMCP(
            name="ollama-operator",
            instructions="Ollama model operator - declare Ollama models to be pulled "
            "into the daemon, inspect their state, refresh and remove them.",
            host=self._config.host,
            port=self._config.port,
        )
        self._mcp = mcp

        register_tools(mcp, self)
        register_routes(mcp, self)
        self._register_core_resources(mcp)

        return mcp

    def _register_core_resources(self, mcp: FastMCP) -> None:
        """Register core MCP resources for operator information."""

        @mcp.resource("ollama://operator/status")
        def operator_status() -> dict:
            """Get Ollama operator status.

            Returns connection and daemon details, controller state and
            request counters.
            """
            controller = self._controller
            result: dict[str, Any] = {
                "version": __version__,
                "namespace": self._config.namespace,
                "connected": self.is_ready,
                "ollama_url": self._config.ollama_url,
                "ollama_version": self._ollama_version(),
                "controller": {
                    "enabled": self._config.enable_controller,
                    "running": controller.is_running if controller else False,
                    "queued": len(controller.queue) if controller else 0,
                },
            }
            if isinstance(self._metrics, InMemoryRequestMetrics):
                result["requests"] = {
                    "total": self._metrics.total_requests,
                    "series": self._metrics.snapshot(),
                }
            return result

        logger.info("Registered core MCP resources")

    def _ollama_version(self) -> str | None:
        """Ask the daemon for its version; None when unreachable or not configured."""
        if self._ollama is None:
            return None
        try:
            return self._ollama.version()
        except OllamaError as e:
            logger.warning(f"Could not get Ollama version: {e}")
            return None


# Global server instance
_server: OperatorServer | None = None


def get_server() -> OperatorServer:
    """Get the global server instance."""
    global _server
    if _server is None:
        _server = OperatorServer()
    return _server


def create_server(config: OperatorConfig | None = None) -> FastMCP:
    """Create and return the MCP server instance.

    This is the main entry point for creating the server.
    """
    global _server
    _server = OperatorServer(config)
    return _server.create_mcp()
