"""HTTP routes exposing OllamaModel records.

Routes read and write the record store only; they never call the Ollama
daemon. A refresh request just sets the marker the reconciler consumes.
"""

from __future__ import annotations

import functools
import hmac
import logging
import time
from collections.abc import Awaitable, Callable
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from ollama_operator.domains.models.models import CreateModelRequest, ModelView
from ollama_operator.utils.errors import (
    NotFoundError,
    OperatorError,
    ResourceExistsError,
    ValidationError,
)

if TYPE_CHECKING:
    from mcp.server.fastmcp import FastMCP

    from ollama_operator.server import OperatorServer

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
API_KEY_HEADER = "X-API-Key"

Handler = Callable[[Request], Awaitable[Response]]


def error_response(message: str, status: HTTPStatus) -> JSONResponse:
    """Build a JSON error body."""
    return JSONResponse({"error": message}, status_code=status)


def register_routes(mcp: FastMCP, server: OperatorServer) -> None:
    """Register the REST API and health routes on the MCP HTTP app."""

    def instrumented(path: str) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            @functools.wraps(handler)
            async def wrapper(request: Request) -> Response:
                start = time.perf_counter()
                response = await handler(request)
                server.metrics.observe(
                    request.method, path, response.status_code, time.perf_counter() - start
                )
                return response

            return wrapper

        return decorator

    def authenticated(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def wrapper(request: Request) -> Response:
            expected = server.config.api_key
            if expected:
                provided = request.headers.get(API_KEY_HEADER, "")
                if not hmac.compare_digest(provided.encode(), expected.encode()):
                    return error_response("Unauthorized", HTTPStatus.UNAUTHORIZED)
            return await handler(request)

        return wrapper

    def lookup_failure(name: str, error: OperatorError, action: str) -> JSONResponse:
        if isinstance(error, NotFoundError):
            return error_response(f"model not found: {name}", HTTPStatus.NOT_FOUND)
        logger.error(f"Failed to {action} model {name}: {error}")
        return error_response(str(error), HTTPStatus.INTERNAL_SERVER_ERROR)

    @mcp.custom_route("/health", methods=["GET"])
    @instrumented("/health")
    async def health(request: Request) -> Response:
        return PlainTextResponse("OK")

    @mcp.custom_route("/readiness", methods=["GET"])
    @instrumented("/readiness")
    async def readiness(request: Request) -> Response:
        if not server.is_ready:
            return PlainTextResponse("Not Ready", status_code=HTTPStatus.SERVICE_UNAVAILABLE)
        return PlainTextResponse("Ready")

    if not server.config.enable_api:
        logger.info("REST API disabled; only health routes registered")
        return

    @mcp.custom_route(f"{API_PREFIX}/models", methods=["GET"])
    @instrumented(f"{API_PREFIX}/models")
    @authenticated
    async def list_models(request: Request) -> Response:
        try:
            models = await run_in_threadpool(server.store.list, server.config.namespace)
        except OperatorError as e:
            logger.error(f"Failed to list models: {e}")
            return error_response(str(e), HTTPStatus.INTERNAL_SERVER_ERROR)
        items = [ModelView.from_model(m).to_response() for m in models]
        return JSONResponse({"items": items})

    @mcp.custom_route(f"{API_PREFIX}/models", methods=["POST"])
    @instrumented(f"{API_PREFIX}/models")
    @authenticated
    async def create_model(request: Request) -> Response:
        try:
            body: Any = await request.json()
            payload = CreateModelRequest.model_validate(body)
        except (ValueError, PydanticValidationError) as e:
            return error_response(f"invalid request: {e}", HTTPStatus.BAD_REQUEST)

        if not payload.name.strip() or not payload.tag.strip():
            return error_response("name and tag are required", HTTPStatus.BAD_REQUEST)

        try:
            model = await run_in_threadpool(
                server.store.create, server.config.namespace, payload.name, payload.tag
            )
        except ValidationError as e:
            return error_response(str(e), HTTPStatus.BAD_REQUEST)
        except ResourceExistsError:
            return error_response(
                f"model already exists: {payload.resource_name}", HTTPStatus.CONFLICT
            )
        except OperatorError as e:
            logger.error(f"Failed to create model {payload.resource_name}: {e}")
            return error_response(str(e), HTTPStatus.INTERNAL_SERVER_ERROR)
        return JSONResponse(ModelView.from_model(model).to_response(), status_code=HTTPStatus.CREATED)

    @mcp.custom_route(f"{API_PREFIX}/models/{{name}}", methods=["GET"])
    @instrumented(f"{API_PREFIX}/models/{{name}}")
    @authenticated
    async def get_model(request: Request) -> Response:
        name = request.path_params["name"]
        try:
            model = await run_in_threadpool(server.store.get, server.config.namespace, name)
        except OperatorError as e:
            return lookup_failure(name, e, "get")
        return JSONResponse(ModelView.from_model(model).to_response())

    @mcp.custom_route(f"{API_PREFIX}/models/{{name}}", methods=["DELETE"])
    @instrumented(f"{API_PREFIX}/models/{{name}}")
    @authenticated
    async def delete_model(request: Request) -> Response:
        name = request.path_params["name"]
        try:
            await run_in_threadpool(server.store.delete, server.config.namespace, name)
        except OperatorError as e:
            return lookup_failure(name, e, "delete")
        return Response(status_code=HTTPStatus.NO_CONTENT)

    @mcp.custom_route(f"{API_PREFIX}/models/{{name}}/refresh", methods=["POST"])
    @instrumented(f"{API_PREFIX}/models/{{name}}/refresh")
    @authenticated
    async def refresh_model(request: Request) -> Response:
        name = request.path_params["name"]
        try:
            model = await run_in_threadpool(
                server.store.request_refresh, server.config.namespace, name
            )
        except OperatorError as e:
            return lookup_failure(name, e, "refresh")
        return JSONResponse(ModelView.from_model(model).to_response(), status_code=HTTPStatus.ACCEPTED)

    logger.info(f"Registered REST API routes under {API_PREFIX}")
