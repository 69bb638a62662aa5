"""Build variant loading.

A build context directory may carry a ``variants.yaml`` file mapping
variant names to build arguments::

    variants:
      main:
        BASE_IMAGE: alpine:3.18
      legacy:
        BASE_IMAGE: alpine:3.14

Each variant builds every target once with its arguments.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from prow_image_builder.builds.destinations import ReadText, read_file_text
from prow_image_builder.errors import ConfigurationError
from prow_image_builder.types import BuildVariant

logger = logging.getLogger(__name__)

VARIANTS_FILE = "variants.yaml"


def parse_variants(content: str) -> list[BuildVariant]:
    """Parse the content of a variants.yaml file.

    Args:
        content: YAML text.

    Returns:
        Variants in file order.

    Raises:
        ConfigurationError: If the content is not a valid variants mapping.
    """
    try:
        data: Any = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"failed reading {VARIANTS_FILE}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"failed reading {VARIANTS_FILE}: expected a mapping, "
            f"got {type(data).__name__}"
        )

    unknown = sorted(str(key) for key in data if key != "variants")
    if unknown:
        raise ConfigurationError(
            f"failed reading {VARIANTS_FILE}: unknown fields {', '.join(unknown)}"
        )

    raw_variants = data.get("variants") or {}
    if not isinstance(raw_variants, dict):
        raise ConfigurationError(
            f"failed reading {VARIANTS_FILE}: 'variants' must be a mapping"
        )

    variants: list[BuildVariant] = []
    for name, build_args in raw_variants.items():
        if build_args is None:
            build_args = {}
        if not isinstance(build_args, dict):
            raise ConfigurationError(
                f"failed reading {VARIANTS_FILE}: build args of variant "
                f"{name!r} must be a mapping"
            )
        variants.append(
            BuildVariant(
                name=str(name),
                build_args={str(k): str(v) for k, v in build_args.items()},
            )
        )
    return variants


def select_variants(
    variants: list[BuildVariant],
    build_variant: str | None = None,
) -> list[BuildVariant]:
    """Apply the variant filter.

    Args:
        variants: All variants.
        build_variant: Name of the only variant to build, or None for all.

    Returns:
        Selected variants.

    Raises:
        ConfigurationError: If nothing is selected.
    """
    if build_variant:
        selected = [v for v in variants if v.name == build_variant]
    else:
        selected = list(variants)

    if not selected:
        if build_variant:
            raise ConfigurationError(
                f"variant {build_variant!r} not found in {VARIANTS_FILE}"
            )
        raise ConfigurationError(f"no variants defined in {VARIANTS_FILE}")
    return selected


def load_variants(
    context_dir: Path,
    build_variant: str | None = None,
    read_text: ReadText = read_file_text,
) -> list[BuildVariant]:
    """Load and filter the variants of a build context.

    Args:
        context_dir: Build context directory containing variants.yaml.
        build_variant: Name of the only variant to build, or None for all.
        read_text: Reader returning the file content.

    Returns:
        Selected variants.

    Raises:
        ConfigurationError: If the file is missing, invalid, or selects
            no variant.
    """
    path = context_dir / VARIANTS_FILE
    try:
        content = read_text(path)
    except FileNotFoundError as e:
        raise ConfigurationError(f"{VARIANTS_FILE} not found in {context_dir}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"failed to load {VARIANTS_FILE}: {e}") from e

    variants = select_variants(parse_variants(content), build_variant)
    logger.info(
        "Selected variants for this build: %s",
        ", ".join(str(v) for v in variants),
    )
    return variants


__all__ = ["VARIANTS_FILE", "load_variants", "parse_variants", "select_variants"]
