"""Tests for builds/destinations.py module."""

from datetime import date
from pathlib import Path

import pytest

from prow_image_builder.builds.destinations import (
    Destinations,
    TagPolicy,
    VersionContext,
    read_version,
    resolve_destinations,
    resolve_variant_destinations,
)
from prow_image_builder.errors import (
    ConfigurationError,
    EmptyVersionFileError,
    InvalidSHAError,
)

REGISTRY = "registry.example.com/acme"
SHA = "abcdef1234567890"
TODAY = date(2024, 3, 5)


def _reader(content: str):
    def read_text(path: Path) -> str:
        return content

    return read_text


def _missing(path: Path) -> str:
    raise FileNotFoundError(2, "No such file or directory", str(path))


def _context(version: str | None = "1.2.3", head_sha: str = SHA) -> VersionContext:
    return VersionContext(
        registry=REGISTRY,
        head_sha=head_sha,
        version_file=Path("/src/VERSION"),
        today=TODAY,
        read_text=_reader(version) if version is not None else _missing,
    )


class TestTagPolicy:
    """Tests for TagPolicy validation."""

    def test_empty_policy_rejected(self):
        """A regular build needs at least one tagging scheme."""
        with pytest.raises(ConfigurationError, match="at least one tagging scheme"):
            TagPolicy().validate()

    def test_single_scheme_accepted(self):
        """Any single scheme is enough."""
        TagPolicy(latest_tag=True).validate()
        TagPolicy(fixed_tags=("stable",)).validate()
        TagPolicy(date_sha_tag_prefixes=("nightly",)).validate()

    def test_variant_mode_requires_empty_policy(self):
        """Tagging options conflict with variant builds."""
        TagPolicy().validate(variant_mode=True)
        with pytest.raises(ConfigurationError, match="variant"):
            TagPolicy(date_sha_tag=True).validate(variant_mode=True)

    def test_needs_version(self):
        """Only version based schemes read the VERSION file."""
        assert TagPolicy(version_tag=True).needs_version
        assert TagPolicy(inject_effective_version=True).needs_version
        assert not TagPolicy(date_sha_tag=True).needs_version


class TestReadVersion:
    """Tests for read_version function."""

    def test_first_line(self):
        """Returns the first line, stripped."""
        assert read_version(Path("VERSION"), _reader("1.2.3\nignored\n")) == "1.2.3"

    def test_skips_blank_lines(self):
        """Leading blank lines are skipped."""
        assert read_version(Path("VERSION"), _reader("\n  \n 2.0.0 \n")) == "2.0.0"

    def test_empty_file(self):
        """An empty file raises EmptyVersionFileError."""
        with pytest.raises(EmptyVersionFileError):
            read_version(Path("VERSION"), _reader(""))

    def test_missing_file(self):
        """A missing file raises EmptyVersionFileError."""
        with pytest.raises(EmptyVersionFileError) as exc_info:
            read_version(Path("VERSION"), _missing)
        assert exc_info.value.code == "empty_version_file"

    def test_undecodable_file(self, tmp_path):
        """A VERSION file that is not UTF-8 raises EmptyVersionFileError."""
        version_file = tmp_path / "VERSION"
        version_file.write_bytes(b"\xff\xfe1.2.3\n")

        with pytest.raises(EmptyVersionFileError):
            read_version(version_file)

    def test_reads_real_file(self, tmp_path):
        """The default reader reads from disk."""
        version_file = tmp_path / "VERSION"
        version_file.write_text("3.1.4\n", encoding="utf-8")
        assert read_version(version_file) == "3.1.4"


class TestResolveDestinations:
    """Tests for resolve_destinations function."""

    def test_version_sha_tag(self):
        """Version and short SHA are joined."""
        result = resolve_destinations("app", TagPolicy(version_sha_tag=True), _context())
        assert result.tags == ["1.2.3-abcdef1"]
        assert result.references == [f"{REGISTRY}/app:1.2.3-abcdef1"]

    def test_version_tag(self):
        """Version tag is the VERSION content."""
        result = resolve_destinations("app", TagPolicy(version_tag=True), _context())
        assert result.tags == ["1.2.3"]

    def test_date_sha_tag(self):
        """Date tags use vYYYYMMDD and the short SHA."""
        result = resolve_destinations("app", TagPolicy(date_sha_tag=True), _context())
        assert result.tags == ["v20240305-abcdef1"]

    def test_prefix_and_suffix_tags(self):
        """Prefixes and suffixes wrap the date/SHA tag."""
        policy = TagPolicy(
            date_sha_tag_prefixes=("nightly", "edge"),
            date_sha_tag_suffixes=("debug",),
        )
        result = resolve_destinations("app", policy, _context())
        assert result.tags == [
            "nightly-v20240305-abcdef1",
            "edge-v20240305-abcdef1",
            "v20240305-abcdef1-debug",
        ]

    def test_fixed_and_latest_tags(self):
        """Fixed tags come before latest."""
        policy = TagPolicy(fixed_tags=("stable", "v1"), latest_tag=True)
        result = resolve_destinations("app", policy, _context())
        assert result.tags == ["stable", "v1", "latest"]

    def test_tag_order(self):
        """All schemes resolve in a fixed order."""
        policy = TagPolicy(
            version_tag=True,
            version_sha_tag=True,
            date_sha_tag=True,
            date_sha_tag_prefixes=("p",),
            date_sha_tag_suffixes=("s",),
            fixed_tags=("f",),
            latest_tag=True,
        )
        result = resolve_destinations("app", policy, _context())
        assert result.tags == [
            "1.2.3",
            "1.2.3-abcdef1",
            "v20240305-abcdef1",
            "p-v20240305-abcdef1",
            "v20240305-abcdef1-s",
            "f",
            "latest",
        ]

    def test_inject_effective_version(self):
        """EFFECTIVE_VERSION is passed as build argument, not as tag."""
        policy = TagPolicy(inject_effective_version=True, fixed_tags=("stable",))
        result = resolve_destinations("app", policy, _context())
        assert result.tags == ["stable"]
        assert result.build_args == [f"EFFECTIVE_VERSION=1.2.3-{SHA}"]

    def test_effective_version_with_version_sha_tag(self):
        """The tag uses the short SHA, the build argument the full SHA."""
        policy = TagPolicy(version_sha_tag=True, inject_effective_version=True)
        result = resolve_destinations("app", policy, _context())
        assert result.tags == ["1.2.3-abcdef1"]
        assert result.build_args == ["EFFECTIVE_VERSION=1.2.3-abcdef1234567890"]

    def test_empty_version_file(self):
        """An empty VERSION file fails version tags."""
        with pytest.raises(EmptyVersionFileError):
            resolve_destinations("app", TagPolicy(version_tag=True), _context(""))

    def test_missing_version_file(self):
        """A missing VERSION file fails version tags."""
        with pytest.raises(EmptyVersionFileError):
            resolve_destinations("app", TagPolicy(version_tag=True), _context(None))

    def test_short_sha_rejected(self):
        """SHA based tags need at least seven characters."""
        with pytest.raises(InvalidSHAError) as exc_info:
            resolve_destinations(
                "app", TagPolicy(date_sha_tag=True), _context(head_sha="abc")
            )
        assert exc_info.value.code == "invalid_sha"

    def test_short_sha_checked_before_version_file(self):
        """The SHA is validated before the VERSION file is read."""
        with pytest.raises(InvalidSHAError):
            resolve_destinations(
                "app",
                TagPolicy(version_sha_tag=True),
                _context(None, head_sha="abc"),
            )

    def test_fixed_tags_ignore_short_sha(self):
        """Schemes without SHA do not validate it."""
        result = resolve_destinations(
            "app", TagPolicy(fixed_tags=("stable",)), _context(head_sha="")
        )
        assert result.tags == ["stable"]

    def test_version_tag_without_sha(self):
        """The plain version tag does not need a SHA."""
        result = resolve_destinations(
            "app", TagPolicy(version_tag=True), _context(head_sha="")
        )
        assert result.tags == ["1.2.3"]


class TestResolveVariantDestinations:
    """Tests for resolve_variant_destinations function."""

    def test_variant_tags(self):
        """Variant builds get a dated and a plain variant tag."""
        result = resolve_variant_destinations("app", "main", _context())
        assert result.tags == ["main-v20240305-abcdef1", "main"]
        assert result.references[1] == f"{REGISTRY}/app:main"

    def test_short_sha_rejected(self):
        """Variant tags need a valid SHA."""
        with pytest.raises(InvalidSHAError):
            resolve_variant_destinations("app", "main", _context(head_sha="abc123"))


class TestDestinations:
    """Tests for Destinations rendering."""

    def test_kaniko_args(self):
        """Destinations render as --destination and --build-arg."""
        destinations = Destinations(
            target="app",
            registry=REGISTRY,
            tags=["stable"],
            build_args=["EFFECTIVE_VERSION=1.0.0-abcdef1"],
        )
        assert destinations.kaniko_args() == [
            f"--destination={REGISTRY}/app:stable",
            "--build-arg=EFFECTIVE_VERSION=1.0.0-abcdef1",
        ]
