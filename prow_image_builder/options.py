"""Build options for one image-builder run.

This module defines the Pydantic model validating the per-build inputs
(targets, registry, tagging) and the helper turning validation failures
into ConfigurationError.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from prow_image_builder.builds.destinations import TagPolicy
from prow_image_builder.errors import ConfigurationError

DEFAULT_KANIKO_IMAGE = "gcr.io/kaniko-project/executor:v1.8.0"

# kaniko arguments owned by dedicated options
_RESERVED_KANIKO_ARGS: dict[str, str] = {
    "--cache=": "please use --cache-registry option to enable/disable cache",
    "--cache-repo=": "please use --cache-registry option to enable/disable cache",
    "--destination=": (
        "please use --registry, --target and --add-[xyz]-tag options "
        "to define targets and destinations"
    ),
    "--target=": (
        "please use --registry, --target and --add-[xyz]-tag options "
        "to define targets and destinations"
    ),
    "--dockerfile=": "please use --dockerfile option to define the path to the dockerfile",
}


class BuildOptions(BaseModel):
    """Inputs of one image-builder run.

    Attributes:
        docker_config_secret: Secret holding the docker config.json.
        org: Git organization.
        repo: Git repository.
        head_sha: Commit SHA being built.
        dockerfile: Dockerfile path, relative to the repository root or
            to the build context for variant builds.
        context: Build context directory holding variants.yaml; enables
            variant builds.
        build_variant: Only build this variant.
        targets: Dockerfile targets to build.
        kaniko_args: Extra kaniko arguments.
        registry: Registry the images are pushed to.
        cache_registry: Registry for the kaniko layer cache; empty disables
            caching.
        kaniko_image: kaniko executor image.
        add_version_tag: Tag with the VERSION file content.
        add_version_sha_tag: Tag with ``<version>-<short sha>``.
        add_date_sha_tag: Tag with ``v<YYYYMMDD>-<short sha>``.
        add_date_sha_tag_with_prefix: Prefixed date/SHA tags.
        add_date_sha_tag_with_suffix: Suffixed date/SHA tags.
        add_fixed_tags: Literal tags.
        add_latest_tag: Tag with ``latest``.
        inject_effective_version: Pass EFFECTIVE_VERSION as build argument.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    docker_config_secret: str = Field(description="Secret with docker config.json")
    org: str = Field(description="Git organization")
    repo: str = Field(description="Git repository")
    head_sha: str = Field(default="", description="Commit SHA being built")
    dockerfile: str = Field(default="Dockerfile", description="Dockerfile path")
    context: str = Field(default="", description="Build context for variant builds")
    build_variant: str = Field(default="", description="Only build this variant")
    targets: tuple[str, ...] = Field(default=(), description="Dockerfile targets")
    kaniko_args: tuple[str, ...] = Field(default=(), description="Extra kaniko args")
    registry: str = Field(description="Registry for build artifacts")
    cache_registry: str = Field(default="", description="Registry for kaniko cache")
    kaniko_image: str = Field(default=DEFAULT_KANIKO_IMAGE)

    add_version_tag: bool = False
    add_version_sha_tag: bool = False
    add_date_sha_tag: bool = False
    add_date_sha_tag_with_prefix: tuple[str, ...] = ()
    add_date_sha_tag_with_suffix: tuple[str, ...] = ()
    add_fixed_tags: tuple[str, ...] = ()
    add_latest_tag: bool = False
    inject_effective_version: bool = False

    @property
    def caching_enabled(self) -> bool:
        """Whether kaniko layer caching is enabled."""
        return bool(self.cache_registry)

    @property
    def variant_mode(self) -> bool:
        """Whether the build is driven by variants.yaml."""
        return bool(self.context)

    @property
    def tag_policy(self) -> TagPolicy:
        """Tagging schemes selected by the options."""
        return TagPolicy(
            version_tag=self.add_version_tag,
            version_sha_tag=self.add_version_sha_tag,
            date_sha_tag=self.add_date_sha_tag,
            date_sha_tag_prefixes=self.add_date_sha_tag_with_prefix,
            date_sha_tag_suffixes=self.add_date_sha_tag_with_suffix,
            fixed_tags=self.add_fixed_tags,
            latest_tag=self.add_latest_tag,
            inject_effective_version=self.inject_effective_version,
        )

    @model_validator(mode="after")
    def validate_options(self) -> BuildOptions:
        """Validate required values and conflicting options."""
        if not self.dockerfile:
            raise ValueError('"dockerfile" parameter must not be empty')
        if not self.docker_config_secret:
            raise ValueError('"docker-config-secret" parameter must not be empty')
        if not self.targets:
            raise ValueError('specify at least one "target"')
        if not self.registry:
            raise ValueError('"registry" parameter must not be empty')

        for arg in self.kaniko_args:
            for prefix, message in _RESERVED_KANIKO_ARGS.items():
                if arg.startswith(prefix):
                    raise ValueError(message)

        try:
            self.tag_policy.validate(variant_mode=self.variant_mode)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e
        return self


def load_options(**values: Any) -> BuildOptions:
    """Create BuildOptions, reporting problems as ConfigurationError.

    Args:
        **values: BuildOptions fields.

    Returns:
        Validated BuildOptions.

    Raises:
        ConfigurationError: If the options are invalid.
    """
    try:
        return BuildOptions(**values)
    except ValidationError as e:
        messages = "; ".join(
            err["msg"].removeprefix("Value error, ") for err in e.errors()
        )
        raise ConfigurationError(f"Invalid options: {messages}") from e


__all__ = ["DEFAULT_KANIKO_IMAGE", "BuildOptions", "load_options"]
