"""Kubernetes API adapter.

This module handles:
- In-cluster configuration from the mounted service account
- Pod and persistent volume claim requests over HTTPS
- Streaming pod logs
- Mapping HTTP failures onto cluster error types
"""

from __future__ import annotations

import logging
import os
import ssl
from collections.abc import Iterator
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Any

import httpx

from prow_image_builder.cluster.client import (
    AlreadyExistsError,
    ClusterError,
    Manifest,
    NotFoundError,
    is_owned_by,
)
from prow_image_builder.errors import ConfigurationError
from prow_image_builder.types import UnitKey

if TYPE_CHECKING:
    from prow_image_builder.config import Settings

logger = logging.getLogger(__name__)

# Chunk size for log streaming (bytes)
LOG_CHUNK_SIZE = 64 * 1024


def in_cluster_url(environ: dict[str, str] | None = None) -> str:
    """Derive the API server URL from the in-cluster environment.

    Args:
        environ: Environment mapping; defaults to os.environ.

    Returns:
        HTTPS URL of the API server.

    Raises:
        ConfigurationError: If the service environment variables are unset.
    """
    env = os.environ if environ is None else environ
    host = env.get("KUBERNETES_SERVICE_HOST")
    port = env.get("KUBERNETES_SERVICE_PORT")
    if not host or not port:
        raise ConfigurationError(
            "unable to load in-cluster configuration, KUBERNETES_SERVICE_HOST "
            "and KUBERNETES_SERVICE_PORT must be defined"
        )
    if ":" in host:
        host = f"[{host}]"
    return f"https://{host}:{port}"


def read_namespace(service_account_dir: Path) -> str:
    """Read the namespace of the running pod.

    Args:
        service_account_dir: Mounted service account directory.

    Returns:
        Namespace name.

    Raises:
        ConfigurationError: If the namespace file is missing or empty.
    """
    path = service_account_dir / "namespace"
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"open {path}: {e}") from e

    namespace = content.strip().splitlines()[0].strip() if content.strip() else ""
    if not namespace:
        raise ConfigurationError(f"no namespace in namespace file {path}")
    return namespace


def _error_message(response: httpx.Response) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


def _raise_for_status(response: httpx.Response, what: str) -> None:
    if response.is_success:
        return
    message = f"{what}: {_error_message(response)}"
    if response.status_code == 404:
        raise NotFoundError(message)
    if response.status_code == 409:
        raise AlreadyExistsError(message)
    raise ClusterError(message, status_code=response.status_code)


class KubeClient:
    """ClusterClient implementation talking to the Kubernetes REST API."""

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> KubeClient:
        """Create a client from settings, falling back to in-cluster config.

        Args:
            settings: Application settings.

        Returns:
            KubeClient instance.

        Raises:
            ConfigurationError: If no API URL or token can be determined.
        """
        sa_dir = settings.service_account_dir
        base_url = settings.api_url or in_cluster_url()

        token = settings.api_token
        if token is None:
            token_path = sa_dir / "token"
            try:
                token = token_path.read_text(encoding="utf-8").strip()
            except OSError as e:
                raise ConfigurationError(f"read service account token: {e}") from e

        verify: ssl.SSLContext | bool = True
        ca_path = sa_dir / "ca.crt"
        if ca_path.exists():
            verify = ssl.create_default_context(cafile=str(ca_path))

        client = httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            },
            verify=verify,
            timeout=settings.request_timeout,
        )
        logger.debug("Kubernetes API client configured for %s", base_url)
        return cls(client)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> KubeClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        what: str,
        json: Manifest | None = None,
    ) -> Manifest:
        try:
            response = self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise ClusterError(f"{what}: {e}") from e
        _raise_for_status(response, what)
        try:
            result: Manifest = response.json()
        except ValueError as e:
            raise ClusterError(f"{what}: invalid response body: {e}") from e
        return result

    def get_pod(self, key: UnitKey) -> Manifest:
        """Get a pod."""
        return self._request(
            "GET",
            f"/api/v1/namespaces/{key.namespace}/pods/{key.name}",
            f"get pod {key}",
        )

    def list_pods(self, namespace: str, owner_uid: str) -> list[Manifest]:
        """List the pods of a namespace owned by ``owner_uid``.

        The API server cannot select on owner references, so the filter
        is applied here.
        """
        pod_list = self._request(
            "GET", f"/api/v1/namespaces/{namespace}/pods", f"list pods in {namespace}"
        )
        return [pod for pod in pod_list.get("items") or [] if is_owned_by(pod, owner_uid)]

    def create_pod(self, manifest: Manifest) -> Manifest:
        """Create a pod."""
        key = UnitKey.of(manifest)
        return self._request(
            "POST",
            f"/api/v1/namespaces/{key.namespace}/pods",
            f"create pod {key}",
            json=manifest,
        )

    def get_volume_claim(self, key: UnitKey) -> Manifest:
        """Get a persistent volume claim."""
        return self._request(
            "GET",
            f"/api/v1/namespaces/{key.namespace}/persistentvolumeclaims/{key.name}",
            f"get PVC {key}",
        )

    def create_volume_claim(self, manifest: Manifest) -> Manifest:
        """Create a persistent volume claim."""
        key = UnitKey.of(manifest)
        return self._request(
            "POST",
            f"/api/v1/namespaces/{key.namespace}/persistentvolumeclaims",
            f"create PVC {key}",
            json=manifest,
        )

    def stream_logs(self, key: UnitKey) -> Iterator[bytes]:
        """Stream the log output of a pod.

        Yields:
            Chunks of log output.

        Raises:
            ClusterError: If the stream cannot be opened or breaks.
        """
        path = f"/api/v1/namespaces/{key.namespace}/pods/{key.name}/log"
        what = f"stream logs of pod {key}"
        try:
            with self._client.stream("GET", path) as response:
                if not response.is_success:
                    response.read()
                    _raise_for_status(response, what)
                yield from response.iter_bytes(LOG_CHUNK_SIZE)
        except httpx.HTTPError as e:
            raise ClusterError(f"{what}: {e}") from e


__all__ = ["KubeClient", "in_cluster_url", "read_namespace"]
