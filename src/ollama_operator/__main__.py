"""Entry point for the Ollama operator."""

import argparse
import logging
import sys
from typing import Any

from ollama_operator import __version__
from ollama_operator.config import (
    AuthMode,
    LogLevel,
    OperatorConfig,
    TransportMode,
)
from ollama_operator.utils.errors import OperatorError


def setup_logging(level: LogLevel) -> None:
    """Configure logging for the operator."""
    logging.basicConfig(
        level=level.value,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="ollama-operator",
        description="Kubernetes operator that keeps Ollama models pulled",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # Records and daemon
    parser.add_argument(
        "--namespace",
        default=None,
        help="Namespace holding OllamaModel resources (default: default)",
    )
    parser.add_argument(
        "--ollama-url",
        default=None,
        help="Base URL of the Ollama daemon (default: http://localhost:11434)",
    )

    # Transport options
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default=None,
        help="Transport mode (default: streamable-http)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind HTTP server to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind HTTP server to (default: 8080)",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="Key required in the X-API-Key header for REST routes",
    )

    # Auth options
    parser.add_argument(
        "--auth-mode",
        choices=["auto", "kubeconfig", "token"],
        default=None,
        help="Authentication mode (default: auto)",
    )
    parser.add_argument(
        "--kubeconfig",
        default=None,
        help="Path to kubeconfig file",
    )
    parser.add_argument(
        "--context",
        default=None,
        help="Kubeconfig context to use",
    )

    # Controller options
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of parallel reconciliations (default: 2)",
    )
    parser.add_argument(
        "--no-controller",
        action="store_true",
        help="Serve the API only, without reconciling models",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> OperatorConfig:
    """Build config from args, falling back to environment/defaults."""
    config_kwargs: dict[str, Any] = {}

    if args.namespace:
        config_kwargs["namespace"] = args.namespace

    if args.ollama_url:
        config_kwargs["ollama_url"] = args.ollama_url

    if args.transport:
        config_kwargs["transport"] = TransportMode(args.transport)

    if args.host:
        config_kwargs["host"] = args.host

    if args.port:
        config_kwargs["port"] = args.port

    if args.api_key:
        config_kwargs["api_key"] = args.api_key

    if args.auth_mode:
        config_kwargs["auth_mode"] = AuthMode(args.auth_mode)

    if args.kubeconfig:
        config_kwargs["kubeconfig_path"] = args.kubeconfig

    if args.context:
        config_kwargs["kubeconfig_context"] = args.context

    if args.workers:
        config_kwargs["workers"] = args.workers

    if args.no_controller:
        config_kwargs["enable_controller"] = False

    if args.log_level:
        config_kwargs["log_level"] = LogLevel(args.log_level)

    return OperatorConfig(**config_kwargs)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    config = build_config(args)

    setup_logging(config.log_level)

    logger = logging.getLogger(__name__)
    logger.info(f"Starting Ollama operator v{__version__}")

    try:
        warnings = config.validate_auth_config()
        for warning in warnings:
            logger.warning(warning)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    from ollama_operator.server import create_server, get_server

    mcp = create_server(config)
    server = get_server()

    try:
        server.startup()
    except OperatorError as e:
        logger.error(f"Failed to start: {e}")
        server.shutdown()
        return 1

    try:
        if config.transport == TransportMode.STDIO:
            logger.info("Running with stdio transport")
        else:
            logger.info(
                f"Running with {config.transport.value} transport on {config.host}:{config.port}"
            )
        mcp.run(transport=config.transport.value)
    finally:
        server.shutdown()

    return 0


if __name__ == "__main__":
    sys.exit(main())
