"""Cluster API capability consumed by the build controller.

The controller only needs a handful of pod and volume claim operations.
They are described by the ClusterClient protocol so that the HTTP
adapter and in-memory fakes are interchangeable.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any, Protocol

from prow_image_builder.errors import ImageBuilderError
from prow_image_builder.types import UnitKey

Manifest = dict[str, Any]


class ClusterError(ImageBuilderError):
    """Raised when a cluster API call fails."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str = "cluster_error",
    ) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code


class NotFoundError(ClusterError):
    """Raised when the requested object does not exist."""

    def __init__(self, message: str, code: str = "not_found") -> None:
        super().__init__(message, status_code=404, code=code)


class AlreadyExistsError(ClusterError):
    """Raised when an object to create exists already."""

    def __init__(self, message: str, code: str = "already_exists") -> None:
        super().__init__(message, status_code=409, code=code)


class ClusterClient(Protocol):
    """Pod and volume claim operations of the cluster API."""

    def get_pod(self, key: UnitKey) -> Manifest:
        """Get a pod; raises NotFoundError if absent."""
        ...

    def list_pods(self, namespace: str, owner_uid: str) -> list[Manifest]:
        """List the pods of a namespace owned by the given UID."""
        ...

    def create_pod(self, manifest: Manifest) -> Manifest:
        """Create a pod; raises AlreadyExistsError if it exists."""
        ...

    def get_volume_claim(self, key: UnitKey) -> Manifest:
        """Get a volume claim; raises NotFoundError if absent."""
        ...

    def create_volume_claim(self, manifest: Manifest) -> Manifest:
        """Create a volume claim; raises AlreadyExistsError if it exists."""
        ...

    def stream_logs(self, key: UnitKey) -> Iterator[bytes]:
        """Stream the log output of a pod."""
        ...


def is_owned_by(manifest: Manifest, owner_uid: str) -> bool:
    """Check whether an object has an owner reference to ``owner_uid``."""
    refs = (manifest.get("metadata") or {}).get("ownerReferences") or []
    return any(ref.get("uid") == owner_uid for ref in refs)


__all__ = [
    "AlreadyExistsError",
    "ClusterClient",
    "ClusterError",
    "Manifest",
    "NotFoundError",
    "is_owned_by",
]
