"""Shared fixtures for prow_image_builder tests.

Provides an in-memory cluster standing in for the Kubernetes API, a
driver pod manifest and default build options.
"""

import copy
from collections.abc import Iterator
from datetime import date
from pathlib import Path
from typing import Any

import pytest

from prow_image_builder.builds.pods import DriverPod
from prow_image_builder.cluster.client import (
    AlreadyExistsError,
    NotFoundError,
    is_owned_by,
)
from prow_image_builder.config import Settings
from prow_image_builder.options import BuildOptions, load_options
from prow_image_builder.types import UnitKey

NAMESPACE = "test-pods"
DRIVER_NAME = "job-1234"
DRIVER_UID = "driver-uid"
HEAD_SHA = "abcdef1234567890"


class FakeCluster:
    """In-memory ClusterClient.

    Failures can be queued per operation name in ``failures``; each call
    pops and raises the first queued error.
    """

    def __init__(self) -> None:
        self.pods: dict[UnitKey, dict[str, Any]] = {}
        self.claims: dict[UnitKey, dict[str, Any]] = {}
        self.logs: dict[UnitKey, list[bytes]] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.created: list[str] = []

    def _maybe_fail(self, operation: str) -> None:
        queued = self.failures.get(operation)
        if queued:
            raise queued.pop(0)

    def fail(self, operation: str, error: Exception, times: int = 1) -> None:
        """Queue ``times`` failures for an operation."""
        self.failures.setdefault(operation, []).extend([error] * times)

    def add_pod(self, manifest: dict[str, Any]) -> None:
        """Put a pod into the cluster without recording a creation."""
        self.pods[UnitKey.of(manifest)] = copy.deepcopy(manifest)

    def set_phase(self, name: str, phase: str, namespace: str = NAMESPACE) -> None:
        """Set the status phase of a pod."""
        self.pods[UnitKey(namespace, name)]["status"] = {"phase": phase}

    def delete_pod(self, name: str, namespace: str = NAMESPACE) -> None:
        """Remove a pod."""
        del self.pods[UnitKey(namespace, name)]

    def get_pod(self, key: UnitKey) -> dict[str, Any]:
        self._maybe_fail("get_pod")
        if key not in self.pods:
            raise NotFoundError(f"pod {key} not found")
        return copy.deepcopy(self.pods[key])

    def list_pods(self, namespace: str, owner_uid: str) -> list[dict[str, Any]]:
        self._maybe_fail("list_pods")
        return [
            copy.deepcopy(pod)
            for key, pod in self.pods.items()
            if key.namespace == namespace and is_owned_by(pod, owner_uid)
        ]

    def create_pod(self, manifest: dict[str, Any]) -> dict[str, Any]:
        self._maybe_fail("create_pod")
        key = UnitKey.of(manifest)
        if key in self.pods:
            raise AlreadyExistsError(f"pod {key} exists")
        pod = copy.deepcopy(manifest)
        pod["status"] = {"phase": "Pending"}
        self.pods[key] = pod
        self.created.append(key.name)
        return copy.deepcopy(pod)

    def get_volume_claim(self, key: UnitKey) -> dict[str, Any]:
        self._maybe_fail("get_volume_claim")
        if key not in self.claims:
            raise NotFoundError(f"PVC {key} not found")
        return copy.deepcopy(self.claims[key])

    def create_volume_claim(self, manifest: dict[str, Any]) -> dict[str, Any]:
        self._maybe_fail("create_volume_claim")
        key = UnitKey.of(manifest)
        if key in self.claims:
            raise AlreadyExistsError(f"PVC {key} exists")
        self.claims[key] = copy.deepcopy(manifest)
        return copy.deepcopy(manifest)

    def stream_logs(self, key: UnitKey) -> Iterator[bytes]:
        self._maybe_fail("stream_logs")
        if key not in self.pods:
            raise NotFoundError(f"pod {key} not found")
        yield from self.logs.get(key, [f"log of {key.name}\n".encode()])


def make_driver_manifest(name: str = DRIVER_NAME) -> dict[str, Any]:
    """Build a driver pod manifest as the API server returns it."""
    init_containers = [
        {
            "name": "clonerefs",
            "image": "gcr.io/k8s-prow/clonerefs:v20240301",
            "env": [
                {
                    "name": "CLONEREFS_OPTIONS",
                    "value": '{"src_root":"/home/prow/go"}',
                }
            ],
        }
    ]
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": NAMESPACE,
            "uid": DRIVER_UID,
            "labels": {"prow.k8s.io/id": name, "created-by-prow": "true"},
        },
        "spec": {
            "nodeSelector": {"pool": "builds"},
            "tolerations": [
                {
                    "key": "dedicated",
                    "operator": "Equal",
                    "value": "builds",
                    "effect": "NoSchedule",
                }
            ],
            "initContainers": init_containers,
            "containers": [{"name": "test", "image": "image-builder:latest"}],
        },
        "status": {"phase": "Running"},
    }


@pytest.fixture
def driver_manifest() -> dict[str, Any]:
    """Driver pod manifest with a clonerefs init container."""
    return make_driver_manifest()


@pytest.fixture
def driver(driver_manifest) -> DriverPod:
    """Driver pod parsed from the manifest."""
    return DriverPod.from_manifest(driver_manifest)


@pytest.fixture
def cluster(driver_manifest) -> FakeCluster:
    """Fake cluster holding the driver pod."""
    fake = FakeCluster()
    fake.add_pod(driver_manifest)
    return fake


@pytest.fixture
def today() -> date:
    """Fixed build date."""
    return date(2024, 3, 5)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at temporary directories."""
    return Settings(
        artifacts_dir=tmp_path / "artifacts",
        source_root=tmp_path / "src",
        reconcile_interval=0.01,
        max_errors=5,
    )


@pytest.fixture
def repo_dir(settings: Settings) -> Path:
    """Checkout directory of the acme/widgets repository."""
    path = settings.source_root / "github.com" / "acme" / "widgets"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def options() -> BuildOptions:
    """Two targets tagged with a fixed tag, no caching."""
    return load_options(
        docker_config_secret="docker-config",
        org="acme",
        repo="widgets",
        head_sha=HEAD_SHA,
        targets=("app", "tools"),
        registry="registry.example.com/acme",
        add_fixed_tags=("stable",),
    )
