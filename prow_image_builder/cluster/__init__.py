"""Cluster access.

This module provides:
- The ClusterClient protocol the controller is written against
- Cluster error types
- KubeClient (in cluster.kube), the httpx based adapter for the Kubernetes API
"""

from prow_image_builder.cluster.client import (
    AlreadyExistsError,
    ClusterClient,
    ClusterError,
    NotFoundError,
)

__all__ = ["AlreadyExistsError", "ClusterClient", "ClusterError", "NotFoundError"]
