"""HTTP client for the Ollama daemon's model inventory.

Only the four inventory operations the operator needs are exposed:
``show``, ``pull``, ``delete`` and ``list``. The client has no retry
logic of its own; callers decide the retry policy.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field

from ollama_operator.utils.errors import OperatorError

logger = logging.getLogger(__name__)


class OllamaError(OperatorError):
    """Base exception for Ollama daemon errors."""

    pass


class ModelNotFoundError(OllamaError):
    """The model does not exist in the daemon's inventory."""

    def __init__(self, model: str, message: str | None = None) -> None:
        self.model = model
        super().__init__(message or f"model '{model}' not found")


class OllamaConnectionError(OllamaError):
    """The daemon could not be reached or timed out."""

    pass


class PullCancelledError(OllamaError):
    """A pull was interrupted by a deadline or shutdown."""

    def __init__(self, model: str) -> None:
        self.model = model
        super().__init__(f"pull of '{model}' was cancelled")


class ModelDetails(BaseModel):
    """Subset of the daemon's ``/api/show`` response."""

    modelfile: str = Field("", description="Raw Modelfile content")
    parameters: str | None = Field(None, description="Model parameters")
    template: str | None = Field(None, description="Prompt template")
    details: dict[str, Any] = Field(default_factory=dict, description="Format/family details")


class ListedModel(BaseModel):
    """An entry from the daemon's ``/api/tags`` inventory."""

    name: str = Field(..., description="Model reference, e.g. 'llama3.2:1b'")
    size: int = Field(0, ge=0, description="Size on disk in bytes")
    digest: str | None = Field(None, description="Daemon-reported manifest digest")
    modified_at: str | None = Field(None, description="Last modification time")


class PullProgress(BaseModel):
    """A single progress line from a streaming pull."""

    status: str = Field("", description="Progress status text")
    digest: str | None = Field(None, description="Layer digest being pulled")
    total: int | None = Field(None, description="Total bytes for the layer")
    completed: int | None = Field(None, description="Completed bytes for the layer")


ProgressCallback = Callable[[PullProgress], None]


class RegistryClient(Protocol):
    """Capability interface the reconciler depends on."""

    def show(self, name: str) -> ModelDetails: ...

    def pull(
        self,
        name: str,
        on_progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> None: ...

    def delete(self, name: str) -> None: ...

    def list(self) -> list[ListedModel]: ...


class OllamaClient:
    """Synchronous client for the Ollama REST API."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        """Get the daemon base URL."""
        return self._base_url

    def __enter__(self) -> OllamaClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._client.close()

    def show(self, name: str) -> ModelDetails:
        """Get details for a model.

        Raises:
            ModelNotFoundError: If the model is not present.
            OllamaError: On any other failure.
        """
        response = self._request("POST", "/api/show", name, body={"model": name})
        return ModelDetails.model_validate(response.json())

    def pull(
        self,
        name: str,
        on_progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        """Pull a model, streaming progress to ``on_progress``.

        The progress callback runs on the calling thread between reads, so
        it must return quickly.

        Raises:
            PullCancelledError: If ``cancel`` is set before the pull finishes.
            ModelNotFoundError: If the daemon cannot find the model upstream.
            OllamaError: On any other failure.
        """
        timeout = httpx.Timeout(self._timeout, read=None)
        try:
            with self._client.stream(
                "POST",
                "/api/pull",
                json={"model": name, "stream": True},
                timeout=timeout,
            ) as response:
                if response.status_code >= 400:
                    response.read()
                    raise _error_from_response(response, name)

                for line in response.iter_lines():
                    if cancel is not None and cancel.is_set():
                        raise PullCancelledError(name)
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping unparseable pull progress line: {line!r}")
                        continue
                    if "error" in data:
                        raise OllamaError(data["error"])
                    if on_progress is not None:
                        on_progress(PullProgress.model_validate(data))
        except httpx.TimeoutException as e:
            raise OllamaConnectionError(f"Timed out pulling '{name}': {e}") from e
        except httpx.HTTPError as e:
            raise OllamaConnectionError(f"Failed to pull '{name}': {e}") from e

        if cancel is not None and cancel.is_set():
            raise PullCancelledError(name)

    def delete(self, name: str) -> None:
        """Delete a model from the daemon.

        Raises:
            ModelNotFoundError: If the model is not present.
            OllamaError: On any other failure.
        """
        self._request("DELETE", "/api/delete", name, body={"model": name})

    def list(self) -> list[ListedModel]:
        """List all locally available models."""
        response = self._request("GET", "/api/tags", "")
        return [ListedModel.model_validate(m) for m in response.json().get("models") or []]

    def version(self) -> str:
        """Get the daemon version string."""
        response = self._request("GET", "/api/version", "")
        return str(response.json().get("version", "unknown"))

    def _request(
        self, method: str, path: str, model: str, body: dict[str, Any] | None = None
    ) -> httpx.Response:
        try:
            response = self._client.request(method, path, json=body)
        except httpx.TimeoutException as e:
            raise OllamaConnectionError(f"Timed out calling {path}: {e}") from e
        except httpx.HTTPError as e:
            raise OllamaConnectionError(f"Failed to call {path}: {e}") from e

        if response.status_code >= 400:
            raise _error_from_response(response, model)
        return response


def _error_from_response(response: httpx.Response, model: str) -> OllamaError:
    """Build an error from a failed daemon response."""
    try:
        message = response.json().get("error") or response.text
    except ValueError:
        message = response.text
    message = message or f"HTTP {response.status_code}"

    if response.status_code == 404 or "not found" in message.lower():
        return ModelNotFoundError(model, message)
    return OllamaError(message)
