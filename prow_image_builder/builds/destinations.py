"""Destination tag resolution for build targets.

This module handles:
- Tagging policies (version file, commit SHA, date, fixed tags)
- Per-variant tags for variant builds
- Reading the VERSION file through an injectable reader
- Rendering destinations as kaniko arguments

A destination is ``<registry>/<target>:<tag>``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path

from prow_image_builder.errors import (
    ConfigurationError,
    EmptyVersionFileError,
    InvalidSHAError,
)

logger = logging.getLogger(__name__)

SHORT_SHA_LENGTH = 7

EFFECTIVE_VERSION_ARG = "EFFECTIVE_VERSION"

ReadText = Callable[[Path], str]


def read_file_text(path: Path) -> str:
    """Read a UTF-8 text file."""
    return path.read_text(encoding="utf-8")


def utc_today() -> date:
    """Current date in UTC."""
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class TagPolicy:
    """Enabled tagging schemes.

    Attributes:
        version_tag: Tag with the content of the VERSION file.
        version_sha_tag: Tag with ``<version>-<short sha>``.
        date_sha_tag: Tag with ``v<YYYYMMDD>-<short sha>``.
        date_sha_tag_prefixes: Prefixes for ``<prefix>-v<YYYYMMDD>-<short sha>``.
        date_sha_tag_suffixes: Suffixes for ``v<YYYYMMDD>-<short sha>-<suffix>``.
        fixed_tags: Literal tags.
        latest_tag: Tag with ``latest``.
        inject_effective_version: Pass ``EFFECTIVE_VERSION=<version>-<sha>`` as
            build argument.
    """

    version_tag: bool = False
    version_sha_tag: bool = False
    date_sha_tag: bool = False
    date_sha_tag_prefixes: tuple[str, ...] = ()
    date_sha_tag_suffixes: tuple[str, ...] = ()
    fixed_tags: tuple[str, ...] = ()
    latest_tag: bool = False
    inject_effective_version: bool = False

    @property
    def needs_version(self) -> bool:
        """Whether the VERSION file has to be read."""
        return self.version_tag or self.version_sha_tag or self.inject_effective_version

    @property
    def needs_sha(self) -> bool:
        """Whether any enabled scheme uses the head SHA."""
        return bool(
            self.version_sha_tag
            or self.inject_effective_version
            or self.date_sha_tag
            or self.date_sha_tag_prefixes
            or self.date_sha_tag_suffixes
        )

    @property
    def is_empty(self) -> bool:
        """Whether no scheme is enabled."""
        return not (
            self.version_tag
            or self.version_sha_tag
            or self.date_sha_tag
            or self.date_sha_tag_prefixes
            or self.date_sha_tag_suffixes
            or self.fixed_tags
            or self.latest_tag
            or self.inject_effective_version
        )

    def validate(self, variant_mode: bool = False) -> None:
        """Check that the policy can be used.

        Variant builds are always tagged per variant, so the generic
        schemes must be off in that case. Otherwise at least one scheme
        has to be enabled.

        Args:
            variant_mode: Whether the build uses variants.

        Raises:
            ConfigurationError: If the policy is empty or conflicts with
                variant mode.
        """
        if variant_mode:
            if not self.is_empty:
                raise ConfigurationError(
                    "tagging options cannot be combined with a build context; "
                    "variant builds are tagged per variant"
                )
            return
        if self.is_empty:
            raise ConfigurationError("please choose at least one tagging scheme")


@dataclass(frozen=True)
class VersionContext:
    """Inputs the tagging schemes are computed from.

    Attributes:
        registry: Registry the images are pushed to.
        head_sha: Commit SHA being built.
        version_file: Path of the VERSION file.
        today: Date used by date based tags.
        read_text: Reader for the VERSION file.
    """

    registry: str
    head_sha: str
    version_file: Path | None = None
    today: date = field(default_factory=utc_today)
    read_text: ReadText = read_file_text

    @property
    def short_sha(self) -> str:
        """First seven characters of the head SHA.

        Raises:
            InvalidSHAError: If the SHA is shorter than seven characters.
        """
        if len(self.head_sha) < SHORT_SHA_LENGTH:
            raise InvalidSHAError(self.head_sha)
        return self.head_sha[:SHORT_SHA_LENGTH]

    @property
    def date_stamp(self) -> str:
        """``v<YYYYMMDD>`` stamp of ``today``."""
        return f"v{self.today:%Y%m%d}"


@dataclass
class Destinations:
    """Resolved destinations of one target.

    Attributes:
        target: Dockerfile target.
        registry: Registry the images are pushed to.
        tags: Image tags, in resolution order.
        build_args: Extra ``KEY=VALUE`` build arguments.
    """

    target: str
    registry: str
    tags: list[str] = field(default_factory=list)
    build_args: list[str] = field(default_factory=list)

    @property
    def references(self) -> list[str]:
        """Full image references ``<registry>/<target>:<tag>``."""
        return [f"{self.registry}/{self.target}:{tag}" for tag in self.tags]

    def kaniko_args(self) -> list[str]:
        """Render as kaniko ``--destination`` and ``--build-arg`` arguments."""
        args = [f"--destination={ref}" for ref in self.references]
        args.extend(f"--build-arg={arg}" for arg in self.build_args)
        return args


def read_version(version_file: Path, read_text: ReadText = read_file_text) -> str:
    """Read the version from a VERSION file.

    Args:
        version_file: Path of the file.
        read_text: Reader returning the file content.

    Returns:
        First non-empty line, stripped.

    Raises:
        EmptyVersionFileError: If the file cannot be read or has no version.
    """
    try:
        content = read_text(version_file)
    except (OSError, UnicodeDecodeError) as e:
        raise EmptyVersionFileError(
            f"open VERSION file from git root directory: {e}"
        ) from e

    for line in content.splitlines():
        version = line.strip()
        if version:
            return version

    raise EmptyVersionFileError(f"no version in VERSION file {version_file}")


def resolve_destinations(
    target: str,
    policy: TagPolicy,
    context: VersionContext,
) -> Destinations:
    """Resolve the destinations of a target for a regular build.

    Args:
        target: Dockerfile target.
        policy: Enabled tagging schemes.
        context: Registry, SHA, date and VERSION file.

    Returns:
        Destinations for the target.

    Raises:
        InvalidSHAError: If a SHA based scheme is enabled with a short SHA.
        EmptyVersionFileError: If the VERSION file is needed but unusable.
    """
    result = Destinations(target=target, registry=context.registry)

    # Validate the SHA before touching the file system
    short_sha = context.short_sha if policy.needs_sha else ""

    if policy.needs_version:
        if context.version_file is None:
            raise EmptyVersionFileError("no VERSION file configured")
        version = read_version(context.version_file, context.read_text)

        if policy.version_tag:
            result.tags.append(version)
        if policy.version_sha_tag:
            result.tags.append(f"{version}-{short_sha}")
        if policy.inject_effective_version:
            result.build_args.append(
                f"{EFFECTIVE_VERSION_ARG}={version}-{context.head_sha}"
            )

    if policy.date_sha_tag:
        result.tags.append(f"{context.date_stamp}-{short_sha}")

    for prefix in policy.date_sha_tag_prefixes:
        result.tags.append(f"{prefix}-{context.date_stamp}-{short_sha}")

    for suffix in policy.date_sha_tag_suffixes:
        result.tags.append(f"{context.date_stamp}-{short_sha}-{suffix}")

    result.tags.extend(policy.fixed_tags)

    if policy.latest_tag:
        result.tags.append("latest")

    logger.debug("Destinations for target %s: %s", target, result.references)
    return result


def resolve_variant_destinations(
    target: str,
    variant: str,
    context: VersionContext,
) -> Destinations:
    """Resolve the destinations of a target for a variant build.

    Args:
        target: Dockerfile target.
        variant: Variant name.
        context: Registry, SHA and date.

    Returns:
        Destinations tagged ``<variant>-v<YYYYMMDD>-<short sha>`` and
        ``<variant>``.

    Raises:
        InvalidSHAError: If the SHA is too short.
    """
    tags = [f"{variant}-{context.date_stamp}-{context.short_sha}", variant]
    return Destinations(target=target, registry=context.registry, tags=tags)


__all__ = [
    "Destinations",
    "EFFECTIVE_VERSION_ARG",
    "TagPolicy",
    "VersionContext",
    "read_file_text",
    "read_version",
    "resolve_destinations",
    "resolve_variant_destinations",
    "utc_today",
]
