"""Pod naming for build units.

Build pod names are derived from the driver pod name and a suffix
(``<repo>-<target>`` and friends). Kubernetes limits names to 64
characters here, so long names are shortened with a SHA-256 based
disambiguator. The result only depends on the inputs, which keeps
re-planning idempotent.
"""

from __future__ import annotations

import hashlib

MAX_NAME_LENGTH = 64

# Hex characters of sha256(suffix) appended to a truncated name
DISAMBIGUATOR_LENGTH = 8


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def unit_name(parent: str, suffix: str) -> str:
    """Compute the name of a build pod.

    Args:
        parent: Name of the driver pod.
        suffix: Unit specific suffix, e.g. ``<repo>-<target>``.

    Returns:
        ``<parent>-<suffix>`` when it fits, else the same name truncated
        and followed by a hash of ``suffix``, else a hash of the whole name.
        Never longer than 64 characters.
    """
    full_name = f"{parent}-{suffix}"

    if len(full_name) <= MAX_NAME_LENGTH:
        return full_name

    if len(parent) + DISAMBIGUATOR_LENGTH + 1 <= MAX_NAME_LENGTH:
        keep = MAX_NAME_LENGTH - DISAMBIGUATOR_LENGTH - 1
        return f"{full_name[:keep]}-{_sha256_hex(suffix)[:DISAMBIGUATOR_LENGTH]}"

    return _sha256_hex(full_name)


__all__ = ["MAX_NAME_LENGTH", "unit_name"]
