"""MCP Tools for OllamaModel operations."""

from typing import TYPE_CHECKING, Any

from mcp.server.fastmcp import FastMCP

from ollama_operator.domains.models.models import ModelView, derive_resource_name
from ollama_operator.utils.errors import (
    NotFoundError,
    OperatorError,
    ResourceExistsError,
    ValidationError,
)

if TYPE_CHECKING:
    from ollama_operator.server import OperatorServer


def register_tools(mcp: FastMCP, server: "OperatorServer") -> None:
    """Register OllamaModel tools with the MCP server."""

    @mcp.tool()
    def list_ollama_models() -> dict[str, Any]:
        """List declared Ollama models and their observed state.

        Each item reports the model name and tag, the lifecycle state
        (Pending, Pulling, Ready or Failed), size once pulled, and the last
        error if a pull failed.

        Returns:
            Dictionary with an "items" list of models.
        """
        try:
            models = server.store.list(server.config.namespace)
        except OperatorError as e:
            return {"error": str(e)}
        return {"items": [ModelView.from_model(m).to_response() for m in models]}

    @mcp.tool()
    def get_ollama_model(name: str) -> dict[str, Any]:
        """Get a declared Ollama model by resource name.

        Args:
            name: Resource name, e.g. "llama3.2-1b".

        Returns:
            The model's declared and observed state.
        """
        try:
            model = server.store.get(server.config.namespace, name)
        except NotFoundError:
            return {"error": f"model not found: {name}"}
        except OperatorError as e:
            return {"error": str(e)}
        result = ModelView.from_model(model).to_response()
        result["_source"] = model.to_source_dict()
        return result

    @mcp.tool()
    def create_ollama_model(model_name: str, tag: str) -> dict[str, Any]:
        """Declare that an Ollama model should be pulled.

        The operator pulls the model in the background; poll
        get_ollama_model until its state is Ready or Failed.

        Args:
            model_name: Model name, e.g. "llama3.2".
            tag: Model tag, e.g. "1b".

        Returns:
            The created model record.
        """
        try:
            model = server.store.create(server.config.namespace, model_name, tag)
        except ValidationError as e:
            return {"error": str(e)}
        except ResourceExistsError:
            return {"error": f"model already exists: {derive_resource_name(model_name, tag)}"}
        except OperatorError as e:
            return {"error": str(e)}
        return ModelView.from_model(model).to_response()

    @mcp.tool()
    def delete_ollama_model(name: str) -> dict[str, Any]:
        """Remove a declared Ollama model.

        The operator deletes the model from the Ollama daemon before the
        record disappears.

        Args:
            name: Resource name, e.g. "llama3.2-1b".

        Returns:
            Confirmation of the deletion request.
        """
        try:
            server.store.delete(server.config.namespace, name)
        except NotFoundError:
            return {"error": f"model not found: {name}"}
        except OperatorError as e:
            return {"error": str(e)}
        return {"name": name, "deleted": True}

    @mcp.tool()
    def refresh_ollama_model(name: str) -> dict[str, Any]:
        """Force a re-pull of a declared Ollama model.

        Args:
            name: Resource name, e.g. "llama3.2-1b".

        Returns:
            The model record with the refresh request recorded.
        """
        try:
            model = server.store.request_refresh(server.config.namespace, name)
        except NotFoundError:
            return {"error": f"model not found: {name}"}
        except OperatorError as e:
            return {"error": str(e)}
        result = ModelView.from_model(model).to_response()
        result["refreshRequested"] = True
        return result
