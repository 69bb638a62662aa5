"""Build log collection.

Each build pod's log is copied into the job's artifact directory as
``<NNN>-<pod name>-build-log.txt``, where ``NNN`` is the pod's position
in the build plan. Collection is best effort: failures are logged and
never abort the build.
"""

from __future__ import annotations

import logging
from pathlib import Path

from prow_image_builder.cluster.client import ClusterClient, ClusterError
from prow_image_builder.types import UnitKey

logger = logging.getLogger(__name__)


def log_file_path(artifacts_dir: Path, index: int, name: str) -> Path:
    """Return the artifact path of a build pod log.

    Args:
        artifacts_dir: Artifact directory of the job.
        index: Position of the pod in the build plan.
        name: Pod name.

    Returns:
        Path of the log file.
    """
    return artifacts_dir / f"{index:03d}-{name}-build-log.txt"


def collect_unit_logs(
    cluster: ClusterClient,
    key: UnitKey,
    index: int,
    artifacts_dir: Path,
) -> Path | None:
    """Copy the log of a build pod into the artifact directory.

    Args:
        cluster: Cluster API client.
        key: Pod identity.
        index: Position of the pod in the build plan.
        artifacts_dir: Artifact directory of the job.

    Returns:
        Path of the written log file, or None if collection failed.
    """
    path = log_file_path(artifacts_dir, index, key.name)
    logger.info("Collecting logs of pod %s", key.name)

    try:
        artifacts_dir.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as log_file:
            for chunk in cluster.stream_logs(key):
                log_file.write(chunk)
    except ClusterError as e:
        logger.error("Error streaming logs of pod %s: %s", key.name, e)
        return None
    except OSError as e:
        logger.error("Error writing log file %s for pod %s: %s", path, key.name, e)
        return None

    logger.debug("Logs of pod %s written to %s", key.name, path)
    return path


__all__ = ["collect_unit_logs", "log_file_path"]
