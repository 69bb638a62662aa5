"""Shared type definitions for prow_image_builder.

This module contains enums and small value types shared across
subpackages to avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple


class UnitPhase(str, Enum):
    """Phase of a build unit as reported by the cluster."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the unit has finished, successfully or not."""
        return self in (UnitPhase.SUCCEEDED, UnitPhase.FAILED)

    @classmethod
    def from_status(cls, phase: str | None) -> UnitPhase:
        """Parse a pod status phase.

        Phases outside the four known values (e.g. ``Unknown``, or a pod
        without status yet) are treated as pending.

        Args:
            phase: Raw ``status.phase`` value.

        Returns:
            Parsed UnitPhase.
        """
        try:
            return cls(phase)
        except ValueError:
            return cls.PENDING


class UnitKey(NamedTuple):
    """Namespaced identity of a pod."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def of(cls, manifest: dict[str, Any]) -> UnitKey:
        """Build the key of a pod manifest."""
        metadata = manifest.get("metadata", {})
        return cls(metadata.get("namespace", ""), metadata.get("name", ""))


@dataclass(frozen=True)
class BuildVariant:
    """A named set of build arguments read from variants.yaml.

    The implicit variant of a regular build has no name and no arguments.
    """

    name: str | None = None
    build_args: dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{{name: {self.name} buildArgs: {self.build_args}}}"


__all__ = ["BuildVariant", "UnitKey", "UnitPhase"]
