"""Smoke tests for the CLI.

These tests verify CLI behavior without a cluster: the plan command
works on a manifest file, and the run command is tested with the
cluster client and the controller loop patched out.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from prow_image_builder import __version__
from prow_image_builder.cli import app
from prow_image_builder.errors import BuildFailedError
from prow_image_builder.jobspec import JobSpec
from prow_image_builder.types import UnitKey

runner = CliRunner()

JOB_SPEC = json.dumps(
    {
        "type": "presubmit",
        "job": "pre-widgets-image",
        "prowjobid": "job-1234",
        "refs": {
            "org": "acme",
            "repo": "widgets",
            "base_sha": "1111111111111111111111111111111111111111",
            "pulls": [{"number": 1, "sha": "2222222222222222222222222222222222222222"}],
        },
    }
)

BUILD_ARGS = [
    "--docker-config-secret",
    "docker-config",
    "--registry",
    "registry.example.com/acme",
    "--target",
    "app",
    "--target",
    "tools",
    "--add-fixed-tag",
    "stable",
]


@pytest.fixture
def manifest_file(tmp_path, driver_manifest):
    """Driver pod manifest written as YAML."""
    path = tmp_path / "driver.yaml"
    path.write_text(yaml.safe_dump(driver_manifest), encoding="utf-8")
    return path


@pytest.fixture
def service_account(tmp_path):
    """Service account directory with a namespace file."""
    path = tmp_path / "serviceaccount"
    path.mkdir()
    (path / "namespace").write_text("test-pods\n", encoding="utf-8")
    (path / "token").write_text("token\n", encoding="utf-8")
    return path


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "kaniko" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout

    def test_invalid_log_level(self) -> None:
        """Unknown log levels are rejected."""
        result = runner.invoke(app, ["--log-level", "loud", "config"])
        assert result.exit_code != 0


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command(self) -> None:
        """CLI config should show configuration."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Reconcile interval" in result.stdout
        assert "Storage class" in result.stdout

    def test_config_json(self) -> None:
        """CLI config --json should output valid JSON."""
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert "max_errors" in data
        assert "api_token" not in data


class TestCLIPlan:
    """Test CLI plan command."""

    def test_plan_json(self, manifest_file, tmp_path) -> None:
        """plan --json lists the build pods in order."""
        result = runner.invoke(
            app,
            [
                "plan",
                "--driver-manifest",
                str(manifest_file),
                "--org",
                "acme",
                "--repo",
                "widgets",
                "--source-root",
                str(tmp_path),
                "--json",
                *BUILD_ARGS,
            ],
        )

        assert result.exit_code == 0, result.stdout
        data = json.loads(result.stdout)
        assert [u["name"] for u in data] == [
            "job-1234-widgets-clonerefs",
            "job-1234-widgets-app",
            "job-1234-widgets-tools",
        ]
        assert [u["group"] for u in data] == ["clone", "parallelBuild", "parallelBuild"]
        assert "--destination=registry.example.com/acme/app:stable" in data[1]["args"]

    def test_plan_text(self, manifest_file, tmp_path) -> None:
        """plan prints units with group and arguments."""
        result = runner.invoke(
            app,
            [
                "plan",
                "--driver-manifest",
                str(manifest_file),
                "--org",
                "acme",
                "--repo",
                "widgets",
                "--source-root",
                str(tmp_path),
                "--cache-registry",
                "registry.example.com/cache",
                *BUILD_ARGS,
            ],
        )

        assert result.exit_code == 0, result.stdout
        assert "3 build pod(s)" in result.stdout
        assert "createCache" in result.stdout

    def test_plan_variants(self, manifest_file, tmp_path) -> None:
        """plan reads variants.yaml below the source root."""
        context_dir = tmp_path / "github.com" / "acme" / "widgets" / "images"
        context_dir.mkdir(parents=True)
        (context_dir / "variants.yaml").write_text(
            "variants:\n  main:\n    BASE: alpine\n", encoding="utf-8"
        )

        result = runner.invoke(
            app,
            [
                "plan",
                "--driver-manifest",
                str(manifest_file),
                "--org",
                "acme",
                "--repo",
                "widgets",
                "--head-sha",
                "abcdef1234567890",
                "--source-root",
                str(tmp_path),
                "--context",
                "images",
                "--docker-config-secret",
                "docker-config",
                "--registry",
                "registry.example.com/acme",
                "--target",
                "app",
                "--json",
            ],
        )

        assert result.exit_code == 0, result.stdout
        data = json.loads(result.stdout)
        assert data[1]["name"] == "job-1234-widgets-main-app"

    def test_plan_invalid_options(self, manifest_file) -> None:
        """Invalid options exit with code 1."""
        result = runner.invoke(
            app,
            [
                "plan",
                "--driver-manifest",
                str(manifest_file),
                "--org",
                "acme",
                "--repo",
                "widgets",
                "--registry",
                "registry.example.com/acme",
                "--docker-config-secret",
                "docker-config",
                "--add-latest-tag",
            ],
        )

        assert result.exit_code == 1
        assert "Invalid options" in result.stdout

    def test_plan_reserved_kaniko_arg(self, manifest_file) -> None:
        """Reserved kaniko args exit with code 1."""
        result = runner.invoke(
            app,
            [
                "plan",
                "--driver-manifest",
                str(manifest_file),
                "--org",
                "acme",
                "--repo",
                "widgets",
                "--kaniko-arg=--destination=somewhere",
                *BUILD_ARGS,
            ],
        )

        assert result.exit_code == 1
        assert "--add-[xyz]-tag" in result.stdout

    def test_plan_missing_manifest(self, tmp_path) -> None:
        """A missing manifest file exits with code 1."""
        result = runner.invoke(
            app,
            [
                "plan",
                "--driver-manifest",
                str(tmp_path / "nope.yaml"),
                "--org",
                "acme",
                "--repo",
                "widgets",
                *BUILD_ARGS,
            ],
        )

        assert result.exit_code == 1
        assert "File not found" in result.stdout

    def test_plan_undecodable_manifest(self, tmp_path) -> None:
        """A manifest that is not UTF-8 exits with code 1."""
        manifest_file = tmp_path / "driver.yaml"
        manifest_file.write_bytes(b"\xff\xfekind: Pod\n")

        result = runner.invoke(
            app,
            [
                "plan",
                "--driver-manifest",
                str(manifest_file),
                "--org",
                "acme",
                "--repo",
                "widgets",
                *BUILD_ARGS,
            ],
        )

        assert result.exit_code == 1
        assert "Invalid driver manifest" in result.stdout

    def test_plan_missing_version_file(self, manifest_file, tmp_path) -> None:
        """Planning errors exit with code 1."""
        result = runner.invoke(
            app,
            [
                "plan",
                "--driver-manifest",
                str(manifest_file),
                "--org",
                "acme",
                "--repo",
                "widgets",
                "--source-root",
                str(tmp_path),
                "--add-version-tag",
                *BUILD_ARGS,
            ],
        )

        assert result.exit_code == 1
        assert "VERSION" in result.stdout


class TestCLIRun:
    """Test CLI run command."""

    def test_run_without_job_spec(self, monkeypatch, service_account) -> None:
        """run needs the JOB_SPEC environment variable."""
        monkeypatch.delenv("JOB_SPEC", raising=False)
        monkeypatch.setenv("IMAGE_BUILDER_SERVICE_ACCOUNT_DIR", str(service_account))

        result = runner.invoke(app, ["run", *BUILD_ARGS])

        assert result.exit_code == 1
        assert "JOB_SPEC" in result.stdout

    def test_run_without_refs(self, monkeypatch, service_account) -> None:
        """A job spec without refs exits with code 1."""
        monkeypatch.setenv("IMAGE_BUILDER_SERVICE_ACCOUNT_DIR", str(service_account))

        with patch(
            "prow_image_builder.jobspec.load_job_spec",
            return_value=JobSpec(
                type="periodic", job="nightly", prowjobid="job-1234"
            ),
        ):
            result = runner.invoke(app, ["run", *BUILD_ARGS])

        assert result.exit_code == 1
        assert "has no refs" in result.stdout

    def test_run_success(self, monkeypatch, service_account) -> None:
        """run drives the build of the prow job's pod."""
        monkeypatch.setenv("JOB_SPEC", JOB_SPEC)
        monkeypatch.setenv("IMAGE_BUILDER_SERVICE_ACCOUNT_DIR", str(service_account))

        with (
            patch("prow_image_builder.cluster.kube.KubeClient") as kube_cls,
            patch(
                "prow_image_builder.controller.run_controller", return_value=None
            ) as run_controller,
        ):
            kube_cls.from_settings.return_value = MagicMock()
            result = runner.invoke(app, ["run", *BUILD_ARGS])

        assert result.exit_code == 0, result.stdout
        assert "Build succeeded" in result.stdout
        reconciler = run_controller.call_args.args[0]
        assert reconciler.driver_key == UnitKey("test-pods", "job-1234")
        assert reconciler.options.org == "acme"
        assert reconciler.options.head_sha == "2222222222222222222222222222222222222222"
        wakeup = run_controller.call_args.kwargs["wakeup"]
        reconciler.stop(None)
        assert wakeup.is_set()

    def test_run_failure(self, monkeypatch, service_account) -> None:
        """A failed build exits with code 1."""
        monkeypatch.setenv("JOB_SPEC", JOB_SPEC)
        monkeypatch.setenv("IMAGE_BUILDER_SERVICE_ACCOUNT_DIR", str(service_account))

        with (
            patch("prow_image_builder.cluster.kube.KubeClient") as kube_cls,
            patch(
                "prow_image_builder.controller.run_controller",
                return_value=BuildFailedError(["job-1234-widgets-app"]),
            ),
        ):
            kube_cls.from_settings.return_value = MagicMock()
            result = runner.invoke(app, ["run", *BUILD_ARGS])

        assert result.exit_code == 1
        assert "Build failed" in result.stdout
