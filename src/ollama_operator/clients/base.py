"""Kubernetes client wrapper used by the operator."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from kubernetes import client as k8s_client  # type: ignore[import-untyped]
from kubernetes import config as k8s_config  # type: ignore[import-untyped]
from kubernetes.client import ApiException  # type: ignore[import-untyped]
from kubernetes.config import ConfigException  # type: ignore[import-untyped]
from kubernetes.dynamic import DynamicClient  # type: ignore[import-untyped]

from ollama_operator.config import AuthMode
from ollama_operator.utils.errors import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    OperatorError,
    ResourceExistsError,
)

if TYPE_CHECKING:
    from ollama_operator.config import OperatorConfig

logger = logging.getLogger(__name__)

MERGE_PATCH = "application/merge-patch+json"


@dataclass(frozen=True)
class CRDDefinition:
    """Definition of a custom resource type."""

    group: str
    version: str
    plural: str
    kind: str

    @property
    def api_version(self) -> str:
        """Get the full apiVersion string."""
        return f"{self.group}/{self.version}"


class K8sClient:
    """Thin wrapper over the Kubernetes dynamic client.

    Translates API failures into the operator error taxonomy so callers
    never need to inspect raw ``ApiException`` status codes.
    """

    def __init__(self, config: OperatorConfig | None = None) -> None:
        if config is None:
            from ollama_operator.config import get_config

            config = get_config()
        self._config = config
        self._api_client: Any = None
        self._core_v1: Any = None
        self._dynamic_client: Any = None
        self._crd_cache: dict[str, Any] = {}

    @property
    def is_connected(self) -> bool:
        """Check if the client has been connected."""
        return self._dynamic_client is not None

    @property
    def core_v1(self) -> Any:
        """Get the CoreV1Api client.

        Raises:
            RuntimeError: If not connected.
        """
        if self._core_v1 is None:
            raise RuntimeError("K8s client not connected")
        return self._core_v1

    @property
    def dynamic(self) -> Any:
        """Get the dynamic client.

        Raises:
            RuntimeError: If not connected.
        """
        if self._dynamic_client is None:
            raise RuntimeError("K8s client not connected")
        return self._dynamic_client

    def connect(self) -> None:
        """Load credentials and create API clients.

        Raises:
            AuthenticationError: If no usable credentials are found.
            ConfigurationError: If token mode lacks a server or token.
        """
        configuration = self._load_configuration()
        self._api_client = k8s_client.ApiClient(configuration)
        self._core_v1 = k8s_client.CoreV1Api(self._api_client)
        self._dynamic_client = DynamicClient(self._api_client)
        logger.info(f"Connected to Kubernetes API at {configuration.host}")

    def disconnect(self) -> None:
        """Release API clients."""
        if self._api_client is not None:
            try:
                self._api_client.close()
            except Exception as e:
                logger.debug(f"Error closing API client: {e}")
        self._api_client = None
        self._core_v1 = None
        self._dynamic_client = None
        self._crd_cache.clear()
        logger.info("Disconnected from Kubernetes API")

    def _load_configuration(self) -> Any:
        mode = self._config.auth_mode

        if mode == AuthMode.TOKEN:
            if not self._config.api_server or not self._config.api_token:
                raise ConfigurationError("Token auth requires api_server and api_token")
            configuration = k8s_client.Configuration()
            configuration.host = self._config.api_server
            configuration.api_key = {"authorization": f"Bearer {self._config.api_token}"}
            return configuration

        if mode == AuthMode.AUTO:
            try:
                k8s_config.load_incluster_config()
                logger.debug("Using in-cluster Kubernetes configuration")
                return k8s_client.Configuration.get_default_copy()
            except ConfigException:
                logger.debug("Not running in-cluster, falling back to kubeconfig")

        config_file = self._config.kubeconfig_path
        if config_file:
            config_file = str(Path(config_file).expanduser())
        configuration = k8s_client.Configuration()
        try:
            k8s_config.load_kube_config(
                config_file=config_file,
                context=self._config.kubeconfig_context,
                client_configuration=configuration,
            )
        except (ConfigException, FileNotFoundError) as e:
            raise AuthenticationError(f"Failed to load Kubernetes configuration: {e}") from e
        return configuration

    def get_resource(self, crd: CRDDefinition) -> Any:
        """Get (and cache) the dynamic resource handle for a CRD."""
        key = f"{crd.api_version}/{crd.plural}"
        if key not in self._crd_cache:
            self._crd_cache[key] = self.dynamic.resources.get(
                api_version=crd.api_version, kind=crd.kind
            )
        return self._crd_cache[key]

    def get(self, crd: CRDDefinition, name: str, namespace: str | None = None) -> Any:
        """Get a single custom resource."""
        resource = self.get_resource(crd)
        try:
            return resource.get(name=name, namespace=namespace)
        except ApiException as e:
            raise _translate(e, crd, name, namespace) from e

    def list_resources(
        self,
        crd: CRDDefinition,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> list[Any]:
        """List custom resources."""
        resource = self.get_resource(crd)
        try:
            result = resource.get(namespace=namespace, label_selector=label_selector)
        except ApiException as e:
            raise _translate(e, crd, crd.plural, namespace) from e
        return list(result.items)

    def create(self, crd: CRDDefinition, body: dict[str, Any], namespace: str | None = None) -> Any:
        """Create a custom resource."""
        resource = self.get_resource(crd)
        name = body.get("metadata", {}).get("name", "")
        try:
            return resource.create(body=body, namespace=namespace)
        except ApiException as e:
            if e.status == 409:
                raise ResourceExistsError(crd.kind, name, namespace) from e
            raise _translate(e, crd, name, namespace) from e

    def delete(self, crd: CRDDefinition, name: str, namespace: str | None = None) -> None:
        """Delete a custom resource (marks it for deletion when finalizers exist)."""
        resource = self.get_resource(crd)
        try:
            resource.delete(name=name, namespace=namespace)
        except ApiException as e:
            raise _translate(e, crd, name, namespace) from e

    def patch(
        self,
        crd: CRDDefinition,
        name: str,
        body: dict[str, Any],
        namespace: str | None = None,
    ) -> Any:
        """Merge-patch a custom resource.

        Including ``metadata.resourceVersion`` in the body makes the patch
        conditional; a stale version raises ConflictError.
        """
        resource = self.get_resource(crd)
        try:
            return resource.patch(
                body=body, name=name, namespace=namespace, content_type=MERGE_PATCH
            )
        except ApiException as e:
            raise _translate(e, crd, name, namespace) from e

    def patch_status(
        self,
        crd: CRDDefinition,
        name: str,
        status: dict[str, Any],
        namespace: str | None = None,
    ) -> Any:
        """Merge-patch the status subresource of a custom resource."""
        resource = self.get_resource(crd)
        try:
            return resource.status.patch(
                body={"status": status},
                name=name,
                namespace=namespace,
                content_type=MERGE_PATCH,
            )
        except ApiException as e:
            raise _translate(e, crd, name, namespace) from e

    def watch(
        self,
        crd: CRDDefinition,
        namespace: str | None = None,
        resource_version: str | None = None,
        timeout_seconds: int | None = None,
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        """Stream change notifications for a CRD.

        Yields:
            Tuples of (event type, raw object dict). Event types are
            ADDED, MODIFIED, DELETED, BOOKMARK and ERROR.
        """
        resource = self.get_resource(crd)
        try:
            for event in resource.watch(
                namespace=namespace,
                resource_version=resource_version,
                timeout=timeout_seconds,
            ):
                yield event["type"], event.get("raw_object") or {}
        except ApiException as e:
            raise _translate(e, crd, crd.plural, namespace) from e

    def create_event(self, namespace: str, body: dict[str, Any]) -> Any:
        """Create a core/v1 Event."""
        try:
            return self.core_v1.create_namespaced_event(namespace=namespace, body=body)
        except ApiException as e:
            raise OperatorError(f"Failed to create event: {e.reason}") from e


def _translate(
    error: ApiException, crd: CRDDefinition, name: str, namespace: str | None
) -> OperatorError:
    """Map an ApiException onto the operator error taxonomy."""
    if error.status == 404:
        return NotFoundError(crd.kind, name, namespace)
    if error.status == 409:
        return ConflictError(crd.kind, name, namespace)
    if error.status in (401, 403):
        return AuthenticationError(f"Access denied to {crd.kind} '{name}': {error.reason}")
    return OperatorError(f"Kubernetes API error for {crd.kind} '{name}': {error.status} {error.reason}")
