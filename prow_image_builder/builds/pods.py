"""Pod and volume claim manifests for build units.

This module handles:
- Reading the relevant parts of the driver pod
- Composing the clonerefs pod and the kaniko build pods
- Copying node assignment and ownership from the driver pod
- Composing the shared code volume claim

Manifests are plain mappings in Kubernetes JSON shape so they can be
sent to the API server as they are.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from prow_image_builder.errors import MissingCloneConfigError
from prow_image_builder.types import UnitKey

logger = logging.getLogger(__name__)

CODE_VOLUME = "code"
DOCKER_CONFIG_VOLUME = "docker-config"
LOGS_VOLUME = "logs"

CLONEREFS_CONTAINER = "clonerefs"
CLONEREFS_ENV = "CLONEREFS_OPTIONS"

KANIKO_CONTAINER = "kaniko"
CODE_MOUNT_PATH = "/code"
DOCKER_CONFIG_MOUNT_PATH = "/kaniko/.docker"
PROW_GO_SRC_PATH = "/home/prow/go/src"

HOSTNAME_TOPOLOGY_KEY = "kubernetes.io/hostname"

_ZERO_REQUESTS = {"requests": {"cpu": "0", "memory": "0"}}


@dataclass(frozen=True)
class DriverPod:
    """The parts of the driver pod build units are derived from.

    Attributes:
        name: Pod name.
        namespace: Pod namespace.
        uid: Pod UID, used for owner references.
        labels: Pod labels, used for pod affinity.
        node_selector: Node selector copied to every build pod.
        tolerations: Tolerations copied to every build pod.
        init_containers: Init containers, searched for the clonerefs config.
    """

    name: str
    namespace: str
    uid: str
    labels: dict[str, str] = field(default_factory=dict)
    node_selector: dict[str, str] = field(default_factory=dict)
    tolerations: list[dict[str, Any]] = field(default_factory=list)
    init_containers: list[dict[str, Any]] = field(default_factory=list)

    @property
    def key(self) -> UnitKey:
        """Namespaced identity of the driver pod."""
        return UnitKey(self.namespace, self.name)

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> DriverPod:
        """Read a driver pod from its manifest.

        Args:
            manifest: Pod as returned by the API server.

        Returns:
            DriverPod instance.
        """
        metadata = manifest.get("metadata") or {}
        spec = manifest.get("spec") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            uid=metadata.get("uid", ""),
            labels=dict(metadata.get("labels") or {}),
            node_selector=dict(spec.get("nodeSelector") or {}),
            tolerations=list(spec.get("tolerations") or []),
            init_containers=list(spec.get("initContainers") or []),
        )

    def owner_reference(self) -> dict[str, Any]:
        """Controller owner reference pointing at the driver pod."""
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def clone_config(self) -> tuple[str, dict[str, Any]]:
        """Find the clonerefs image and its options variable.

        Returns:
            Tuple of (image, env var).

        Raises:
            MissingCloneConfigError: If there is no clonerefs init container
                carrying CLONEREFS_OPTIONS.
        """
        for container in self.init_containers:
            if container.get("name") != CLONEREFS_CONTAINER:
                continue
            for env in container.get("env") or []:
                if env.get("name") == CLONEREFS_ENV:
                    return container.get("image", ""), dict(env)
        raise MissingCloneConfigError(
            f"no {CLONEREFS_CONTAINER} init container with {CLONEREFS_ENV} "
            f"in image-builder pod {self.namespace}/{self.name}"
        )


def _base_pod(driver: DriverPod, name: str) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": driver.namespace,
            "ownerReferences": [driver.owner_reference()],
        },
        "spec": {
            "restartPolicy": "Never",
            "volumes": [],
            "containers": [],
        },
    }


def configure_pod(driver: DriverPod, pod: dict[str, Any]) -> dict[str, Any]:
    """Attach the shared code volume and the node assignment of the driver.

    Build pods run on the node of the driver pod so that the
    ReadWriteOnce claim can be mounted by all of them.

    Args:
        driver: Driver pod.
        pod: Pod manifest, modified in place.

    Returns:
        The same manifest.
    """
    spec = pod["spec"]
    spec["volumes"].append(
        {
            "name": CODE_VOLUME,
            # The claim always has the name of the driver pod
            "persistentVolumeClaim": {"claimName": driver.name},
        }
    )
    if driver.node_selector:
        spec["nodeSelector"] = dict(driver.node_selector)
    if driver.tolerations:
        spec["tolerations"] = copy.deepcopy(driver.tolerations)
    spec["affinity"] = {
        "podAffinity": {
            "requiredDuringSchedulingIgnoredDuringExecution": [
                {
                    "labelSelector": {"matchLabels": dict(driver.labels)},
                    "topologyKey": HOSTNAME_TOPOLOGY_KEY,
                }
            ]
        }
    }
    return pod


def define_clone_pod(
    driver: DriverPod,
    name: str,
    org: str,
    repo: str,
) -> dict[str, Any]:
    """Compose the pod checking out the sources onto the code volume.

    Args:
        driver: Driver pod providing the clonerefs image and options.
        name: Pod name.
        org: Git organization.
        repo: Git repository.

    Returns:
        Pod manifest.

    Raises:
        MissingCloneConfigError: If the driver has no clonerefs config.
    """
    image, env = driver.clone_config()

    pod = _base_pod(driver, name)
    pod["spec"]["volumes"].append({"name": LOGS_VOLUME, "emptyDir": {}})
    pod["spec"]["containers"].append(
        {
            "name": CLONEREFS_CONTAINER,
            "image": image,
            "env": [env],
            "volumeMounts": [
                {
                    "name": CODE_VOLUME,
                    "mountPath": f"{PROW_GO_SRC_PATH}/github.com/{org}/{repo}",
                    "subPath": "code",
                },
                {"name": LOGS_VOLUME, "mountPath": "/logs"},
            ],
            "resources": copy.deepcopy(_ZERO_REQUESTS),
        }
    )
    return configure_pod(driver, pod)


def define_build_pod(
    driver: DriverPod,
    name: str,
    kaniko_image: str,
    kaniko_args: list[str],
    docker_config_secret: str,
) -> dict[str, Any]:
    """Compose a kaniko build pod.

    Args:
        driver: Driver pod.
        name: Pod name.
        kaniko_image: kaniko executor image.
        kaniko_args: Full kaniko argument list.
        docker_config_secret: Secret mounted as kaniko docker config.

    Returns:
        Pod manifest.
    """
    pod = _base_pod(driver, name)
    pod["spec"]["volumes"].append(
        {
            "name": DOCKER_CONFIG_VOLUME,
            "secret": {"secretName": docker_config_secret},
        }
    )
    pod["spec"]["containers"].append(
        {
            "name": KANIKO_CONTAINER,
            "image": kaniko_image,
            "args": list(kaniko_args),
            "volumeMounts": [
                {"name": CODE_VOLUME, "mountPath": CODE_MOUNT_PATH, "subPath": "code"},
                {"name": DOCKER_CONFIG_VOLUME, "mountPath": DOCKER_CONFIG_MOUNT_PATH},
            ],
            "resources": copy.deepcopy(_ZERO_REQUESTS),
        }
    )
    return configure_pod(driver, pod)


def define_volume_claim(
    driver: DriverPod,
    storage_class: str,
    storage_size: str,
) -> dict[str, Any]:
    """Compose the claim shared by all build pods.

    Args:
        driver: Driver pod; the claim takes its name and namespace.
        storage_class: Storage class name.
        storage_size: Requested storage, e.g. ``10Gi``.

    Returns:
        PersistentVolumeClaim manifest.
    """
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {
            "name": driver.name,
            "namespace": driver.namespace,
            "ownerReferences": [driver.owner_reference()],
        },
        "spec": {
            "storageClassName": storage_class,
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": storage_size}},
        },
    }


__all__ = [
    "CLONEREFS_CONTAINER",
    "CLONEREFS_ENV",
    "CODE_VOLUME",
    "DriverPod",
    "configure_pod",
    "define_build_pod",
    "define_clone_pod",
    "define_volume_claim",
]
