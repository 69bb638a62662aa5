"""Prow job environment.

Prow passes the job description to every job pod as JSON in the
``JOB_SPEC`` environment variable. The image-builder reads the prow job
id, which is also the name of its own pod, and the refs under test.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from prow_image_builder.errors import ConfigurationError

logger = logging.getLogger(__name__)

JOB_SPEC_ENV = "JOB_SPEC"


class Pull(BaseModel):
    """A pull request merged into the base ref."""

    model_config = ConfigDict(extra="ignore")

    number: int = 0
    author: str = ""
    sha: str = ""


class Refs(BaseModel):
    """Repository and commits under test."""

    model_config = ConfigDict(extra="ignore")

    org: str
    repo: str
    base_ref: str = ""
    base_sha: str = ""
    pulls: list[Pull] = Field(default_factory=list)

    @property
    def head_sha(self) -> str:
        """SHA of the first pull, else the base SHA."""
        if self.pulls and self.pulls[0].sha:
            return self.pulls[0].sha
        return self.base_sha


class JobSpec(BaseModel):
    """The parts of the prow job spec used by the image-builder.

    Attributes:
        type: Job type (presubmit, postsubmit, periodic, batch).
        job: Job name.
        prowjobid: Prow job id; the driver pod carries this name.
        refs: Refs under test.
    """

    model_config = ConfigDict(extra="ignore")

    type: str = ""
    job: str = ""
    prowjobid: str = ""
    refs: Refs | None = None


def parse_job_spec(raw: str) -> JobSpec:
    """Parse and check a JOB_SPEC value.

    Args:
        raw: JSON text.

    Returns:
        JobSpec with prow job id and refs present.

    Raises:
        ConfigurationError: If the JSON is invalid or lacks the job id or refs.
    """
    try:
        spec = JobSpec.model_validate_json(raw)
    except ValidationError as e:
        raise ConfigurationError(f"malformed {JOB_SPEC_ENV}: {e}") from e

    if not spec.prowjobid:
        raise ConfigurationError(f"{JOB_SPEC_ENV} has no prowjobid")
    if spec.refs is None:
        raise ConfigurationError(f"{JOB_SPEC_ENV} has no refs")
    return spec


def load_job_spec(environ: Mapping[str, str] | None = None) -> JobSpec:
    """Read the job spec from the environment.

    Args:
        environ: Environment mapping; defaults to os.environ.

    Returns:
        Parsed JobSpec.

    Raises:
        ConfigurationError: If JOB_SPEC is unset or invalid.
    """
    env = os.environ if environ is None else environ
    raw = env.get(JOB_SPEC_ENV)
    if not raw:
        raise ConfigurationError(f"{JOB_SPEC_ENV} environment variable is not set")

    spec = parse_job_spec(raw)
    logger.debug("Loaded job spec of prow job %s (%s)", spec.prowjobid, spec.job)
    return spec


__all__ = ["JOB_SPEC_ENV", "JobSpec", "Pull", "Refs", "load_job_spec", "parse_job_spec"]
