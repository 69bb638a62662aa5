"""Build plan construction.

This module turns the build options into an ordered, immutable list of
build units:

1. One clonerefs unit checking out the sources (group ``clone``).
2. With caching enabled, the first target of the first variant, which
   warms the layer cache (group ``createCache`` or ``createCache-<variant>``).
3. All remaining (variant, target) pairs (group ``parallelBuild``).

Units of one group are contiguous; the orchestrator runs one group at
a time.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from prow_image_builder.builds.destinations import (
    Destinations,
    TagPolicy,
    VersionContext,
    resolve_destinations,
    resolve_variant_destinations,
)
from prow_image_builder.builds.naming import unit_name
from prow_image_builder.builds.pods import (
    CODE_MOUNT_PATH,
    DriverPod,
    define_build_pod,
    define_clone_pod,
)
from prow_image_builder.errors import ConfigurationError
from prow_image_builder.types import BuildVariant, UnitKey

logger = logging.getLogger(__name__)

CLONE_GROUP = "clone"
CACHE_GROUP = "createCache"
PARALLEL_GROUP = "parallelBuild"


@dataclass(frozen=True)
class BuildUnit:
    """One pod of the build.

    Attributes:
        name: Pod name, unique in the namespace.
        group_id: Build group the pod belongs to.
        spec: Pod manifest.
        index: Position in the plan.
    """

    name: str
    group_id: str
    spec: dict[str, Any] = field(compare=False, repr=False)
    index: int = 0

    @property
    def key(self) -> UnitKey:
        """Namespaced identity of the unit."""
        return UnitKey.of(self.spec)


@dataclass(frozen=True)
class BuildPlan:
    """Ordered build units, contiguous by group."""

    units: tuple[BuildUnit, ...] = ()

    def __len__(self) -> int:
        return len(self.units)

    def __iter__(self) -> Iterator[BuildUnit]:
        return iter(self.units)

    def __getitem__(self, index: int) -> BuildUnit:
        return self.units[index]

    def __bool__(self) -> bool:
        return bool(self.units)

    @property
    def group_ids(self) -> list[str]:
        """Group IDs in execution order."""
        groups: list[str] = []
        for unit in self.units:
            if not groups or groups[-1] != unit.group_id:
                groups.append(unit.group_id)
        return groups

    def group_end(self, start: int) -> int:
        """Index after the last unit of the group starting at ``start``."""
        if start >= len(self.units):
            return len(self.units)
        group_id = self.units[start].group_id
        end = start
        while end < len(self.units) and self.units[end].group_id == group_id:
            end += 1
        return end


def _group_for(
    variant: BuildVariant,
    variant_index: int,
    target_index: int,
    caching_enabled: bool,
) -> str:
    if caching_enabled and variant_index == 0 and target_index == 0:
        if variant.name is not None:
            return f"{CACHE_GROUP}-{variant.name}"
        return CACHE_GROUP
    return PARALLEL_GROUP


def compose_kaniko_args(
    target: str,
    dockerfile: str,
    destinations: Destinations,
    extra_args: Sequence[str] = (),
    build_args: dict[str, str] | None = None,
    cache_registry: str = "",
) -> list[str]:
    """Compose the kaniko argument list of a build unit.

    Args:
        target: Dockerfile target.
        dockerfile: Dockerfile path relative to the build context.
        destinations: Resolved destinations.
        extra_args: Caller supplied kaniko arguments.
        build_args: Variant build arguments.
        cache_registry: Layer cache repository; empty disables caching.

    Returns:
        Arguments as list of strings.
    """
    args = [
        "--skip-unused-stages",
        f"--context={CODE_MOUNT_PATH}",
        f"--dockerfile={dockerfile}",
        f"--target={target}",
    ]
    args.extend(destinations.kaniko_args())
    args.extend(extra_args)

    # Sorted for reproducible manifests
    for key, value in sorted((build_args or {}).items()):
        args.append(f"--build-arg={key}={value}")

    if cache_registry:
        args.extend(["--cache=true", f"--cache-repo={cache_registry}"])

    return args


def build_plan(
    driver: DriverPod,
    *,
    org: str,
    repo: str,
    targets: Sequence[str],
    variants: Sequence[BuildVariant] = (),
    policy: TagPolicy,
    context: VersionContext,
    dockerfile: str = "Dockerfile",
    build_context: str = "",
    kaniko_image: str,
    kaniko_args: Sequence[str] = (),
    docker_config_secret: str,
    cache_registry: str = "",
    variant_mode: bool = False,
    resolve: Callable[[str, TagPolicy, VersionContext], Destinations] = (
        resolve_destinations
    ),
) -> BuildPlan:
    """Define all build units of a build.

    Args:
        driver: Driver pod the units are attached to.
        org: Git organization.
        repo: Git repository.
        targets: Dockerfile targets, in build order.
        variants: Build variants; empty for a regular build.
        policy: Tagging schemes of a regular build.
        context: Registry, SHA, date and VERSION file.
        dockerfile: Dockerfile path.
        build_context: Build context directory of variant builds.
        kaniko_image: kaniko executor image.
        kaniko_args: Extra kaniko arguments.
        docker_config_secret: Secret mounted as kaniko docker config.
        cache_registry: Layer cache repository; empty disables caching.
        variant_mode: Whether variants are in use.
        resolve: Destination resolver for regular builds.

    Returns:
        The build plan.

    Raises:
        ConfigurationError: If no target is given or variant mode selects
            no variant.
        MissingCloneConfigError: If the driver has no clonerefs config.
        InvalidSHAError: If SHA based tags are requested with a short SHA.
        EmptyVersionFileError: If the VERSION file is needed but unusable.
    """
    if not targets:
        raise ConfigurationError('specify at least one "target"')

    if variant_mode and not variants:
        raise ConfigurationError("no build variant selected")
    build_variants = list(variants) or [BuildVariant()]

    caching_enabled = bool(cache_registry)

    clone_name = unit_name(driver.name, f"{repo}-clonerefs")
    units: list[BuildUnit] = [
        BuildUnit(
            name=clone_name,
            group_id=CLONE_GROUP,
            spec=define_clone_pod(driver, clone_name, org, repo),
            index=0,
        )
    ]

    for variant_index, variant in enumerate(build_variants):
        for target_index, target in enumerate(targets):
            if variant.name is not None:
                name = unit_name(driver.name, f"{repo}-{variant.name}-{target}")
                destinations = resolve_variant_destinations(
                    target, variant.name, context
                )
                unit_dockerfile = f"{build_context}/{dockerfile}"
            else:
                name = unit_name(driver.name, f"{repo}-{target}")
                destinations = resolve(target, policy, context)
                unit_dockerfile = dockerfile

            args = compose_kaniko_args(
                target=target,
                dockerfile=unit_dockerfile,
                destinations=destinations,
                extra_args=kaniko_args,
                build_args=variant.build_args,
                cache_registry=cache_registry,
            )
            units.append(
                BuildUnit(
                    name=name,
                    group_id=_group_for(
                        variant, variant_index, target_index, caching_enabled
                    ),
                    spec=define_build_pod(
                        driver, name, kaniko_image, args, docker_config_secret
                    ),
                    index=len(units),
                )
            )

    seen: set[str] = set()
    for unit in units:
        if unit.name in seen:
            raise ConfigurationError(f"duplicate build pod name {unit.name!r}")
        seen.add(unit.name)

    plan = BuildPlan(tuple(units))
    logger.info(
        "%d build pods defined for %d targets (groups: %s)",
        len(plan),
        len(targets),
        ", ".join(plan.group_ids),
    )
    return plan


__all__ = [
    "CACHE_GROUP",
    "CLONE_GROUP",
    "PARALLEL_GROUP",
    "BuildPlan",
    "BuildUnit",
    "build_plan",
    "compose_kaniko_args",
]
