"""Thin CLI wrapper for prow_image_builder.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Annotated, Any

import typer
import yaml
from rich.console import Console
from rich.markup import escape

from prow_image_builder import __version__
from prow_image_builder.config import get_settings, print_settings_json
from prow_image_builder.errors import ImageBuilderError
from prow_image_builder.options import DEFAULT_KANIKO_IMAGE, BuildOptions, load_options

app = typer.Typer(
    name="image-builder",
    help="Image builder - build container images with kaniko pods on Kubernetes",
    no_args_is_help=True,
)
console = Console()

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Options shared by the plan and run commands
DockerConfigSecretOpt = Annotated[
    str,
    typer.Option(
        "--docker-config-secret", help="Secret which includes docker config.json"
    ),
]
DockerfileOpt = Annotated[
    str, typer.Option("--dockerfile", help="Path to the dockerfile to be built")
]
ContextOpt = Annotated[
    str,
    typer.Option(
        "--context", help="Build context directory with variants.yaml (variant build)"
    ),
]
VariantOpt = Annotated[
    str, typer.Option("--variant", help="Only build this variant of variants.yaml")
]
TargetOpt = Annotated[
    list[str] | None,
    typer.Option("--target", "-t", help="Dockerfile target (can be repeated)"),
]
KanikoArgOpt = Annotated[
    list[str] | None,
    typer.Option("--kaniko-arg", help="Extra kaniko argument (can be repeated)"),
]
RegistryOpt = Annotated[
    str,
    typer.Option("--registry", help="Registry where build artifacts are pushed"),
]
CacheRegistryOpt = Annotated[
    str,
    typer.Option(
        "--cache-registry", help="Registry for the kaniko cache; empty disables cache"
    ),
]
KanikoImageOpt = Annotated[
    str, typer.Option("--kaniko-image", help="kaniko executor image")
]
VersionTagOpt = Annotated[
    bool,
    typer.Option("--add-version-tag", help="Tag with the VERSION file content"),
]
VersionSHATagOpt = Annotated[
    bool,
    typer.Option(
        "--add-version-sha-tag", help="Tag with <version>-<short sha>"
    ),
]
DateSHATagOpt = Annotated[
    bool,
    typer.Option("--add-date-sha-tag", help="Tag with v<YYYYMMDD>-<short sha>"),
]
DateSHAPrefixOpt = Annotated[
    list[str] | None,
    typer.Option(
        "--add-date-sha-tag-with-prefix",
        help="Tag with <prefix>-v<YYYYMMDD>-<short sha> (can be repeated)",
    ),
]
DateSHASuffixOpt = Annotated[
    list[str] | None,
    typer.Option(
        "--add-date-sha-tag-with-suffix",
        help="Tag with v<YYYYMMDD>-<short sha>-<suffix> (can be repeated)",
    ),
]
FixedTagOpt = Annotated[
    list[str] | None,
    typer.Option("--add-fixed-tag", help="Add a fixed tag (can be repeated)"),
]
LatestTagOpt = Annotated[
    bool, typer.Option("--add-latest-tag", help="Tag with latest")
]
EffectiveVersionOpt = Annotated[
    bool,
    typer.Option(
        "--inject-effective-version",
        help="Pass EFFECTIVE_VERSION=<version>-<sha> as build argument",
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"prow-image-builder version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Log level (overrides IMAGE_BUILDER_LOG_LEVEL)"),
    ] = None,
) -> None:
    """Image builder - build container images with kaniko pods on Kubernetes."""
    level = (log_level or get_settings().log_level).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise typer.BadParameter(f"unknown log level {log_level!r}")
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _build_options(**values: Any) -> BuildOptions:
    """Validate the options, exiting with code 1 on errors."""
    for key in (
        "targets",
        "kaniko_args",
        "add_date_sha_tag_with_prefix",
        "add_date_sha_tag_with_suffix",
        "add_fixed_tags",
    ):
        values[key] = tuple(values.get(key) or ())
    try:
        return load_options(**values)
    except ImageBuilderError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Artifacts directory: {settings.artifacts_dir}")
        console.print(f"  Source root:         {settings.source_root}")
        console.print(f"  Service account:     {settings.service_account_dir}")
        console.print()
        console.print("[bold]Cluster:[/bold]")
        console.print(f"  API URL:             {settings.api_url or '(in-cluster)'}")
        console.print(f"  Request timeout:     {settings.request_timeout}")
        console.print(f"  Storage class:       {settings.storage_class}")
        console.print(f"  Storage size:        {settings.storage_size}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Reconcile interval:  {settings.reconcile_interval}")
        console.print(f"  Max errors:          {settings.max_errors}")


@app.command()
def plan(
    driver_manifest: Annotated[
        Path,
        typer.Option(
            "--driver-manifest", help="Driver pod manifest (YAML or JSON)"
        ),
    ],
    org: Annotated[str, typer.Option("--org", help="Git organization")],
    repo: Annotated[str, typer.Option("--repo", help="Git repository")],
    head_sha: Annotated[
        str, typer.Option("--head-sha", help="Commit SHA being built")
    ] = "",
    source_root: Annotated[
        Path | None,
        typer.Option(
            "--source-root", help="Root holding github.com/<org>/<repo> checkouts"
        ),
    ] = None,
    docker_config_secret: DockerConfigSecretOpt = "",
    dockerfile: DockerfileOpt = "Dockerfile",
    context: ContextOpt = "",
    variant: VariantOpt = "",
    targets: TargetOpt = None,
    kaniko_args: KanikoArgOpt = None,
    registry: RegistryOpt = "",
    cache_registry: CacheRegistryOpt = "",
    kaniko_image: KanikoImageOpt = DEFAULT_KANIKO_IMAGE,
    add_version_tag: VersionTagOpt = False,
    add_version_sha_tag: VersionSHATagOpt = False,
    add_date_sha_tag: DateSHATagOpt = False,
    add_date_sha_tag_with_prefix: DateSHAPrefixOpt = None,
    add_date_sha_tag_with_suffix: DateSHASuffixOpt = None,
    add_fixed_tags: FixedTagOpt = None,
    add_latest_tag: LatestTagOpt = False,
    inject_effective_version: EffectiveVersionOpt = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the build pods of a build without touching the cluster.

    The driver pod is read from a manifest file. VERSION and
    variants.yaml are read from the local checkout below --source-root.
    """
    from prow_image_builder.builds.pods import DriverPod
    from prow_image_builder.controller.reconciler import define_build_plan

    options = _build_options(
        docker_config_secret=docker_config_secret,
        org=org,
        repo=repo,
        head_sha=head_sha,
        dockerfile=dockerfile,
        context=context,
        build_variant=variant,
        targets=targets,
        kaniko_args=kaniko_args,
        registry=registry,
        cache_registry=cache_registry,
        kaniko_image=kaniko_image,
        add_version_tag=add_version_tag,
        add_version_sha_tag=add_version_sha_tag,
        add_date_sha_tag=add_date_sha_tag,
        add_date_sha_tag_with_prefix=add_date_sha_tag_with_prefix,
        add_date_sha_tag_with_suffix=add_date_sha_tag_with_suffix,
        add_fixed_tags=add_fixed_tags,
        add_latest_tag=add_latest_tag,
        inject_effective_version=inject_effective_version,
    )

    if not driver_manifest.exists():
        console.print(f"[red]File not found: {driver_manifest}[/red]")
        raise typer.Exit(code=1)

    try:
        manifest = yaml.safe_load(driver_manifest.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid driver manifest: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None
    if not isinstance(manifest, dict):
        console.print("[red]Invalid driver manifest: expected a mapping[/red]")
        raise typer.Exit(code=1)

    settings = get_settings()
    if source_root is not None:
        settings = settings.model_copy(update={"source_root": source_root})

    try:
        build = define_build_plan(DriverPod.from_manifest(manifest), options, settings)
    except ImageBuilderError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        output = [
            {
                "index": unit.index,
                "name": unit.name,
                "group": unit.group_id,
                "image": unit.spec["spec"]["containers"][0]["image"],
                "args": unit.spec["spec"]["containers"][0].get("args", []),
            }
            for unit in build
        ]
        console.print(json.dumps(output, indent=2), soft_wrap=True)
        return

    console.print(f"[bold]{len(build)} build pod(s):[/bold]")
    console.print()
    for unit in build:
        container = unit.spec["spec"]["containers"][0]
        console.print(f"  [green]{unit.index:03d} {unit.name}[/green]")
        console.print(f"    Group: {unit.group_id}")
        console.print(f"    Image: {container['image']}")
        for arg in container.get("args", []):
            console.print(f"      {arg}")
        console.print()


@app.command()
def run(
    docker_config_secret: DockerConfigSecretOpt = "",
    dockerfile: DockerfileOpt = "Dockerfile",
    context: ContextOpt = "",
    variant: VariantOpt = "",
    targets: TargetOpt = None,
    kaniko_args: KanikoArgOpt = None,
    registry: RegistryOpt = "",
    cache_registry: CacheRegistryOpt = "",
    kaniko_image: KanikoImageOpt = DEFAULT_KANIKO_IMAGE,
    add_version_tag: VersionTagOpt = False,
    add_version_sha_tag: VersionSHATagOpt = False,
    add_date_sha_tag: DateSHATagOpt = False,
    add_date_sha_tag_with_prefix: DateSHAPrefixOpt = None,
    add_date_sha_tag_with_suffix: DateSHASuffixOpt = None,
    add_fixed_tags: FixedTagOpt = None,
    add_latest_tag: LatestTagOpt = False,
    inject_effective_version: EffectiveVersionOpt = False,
) -> None:
    """Run the build controller inside a prow job pod.

    The repository and commit come from the JOB_SPEC environment
    variable; the driver pod is the pod named by the prow job id.
    """
    from prow_image_builder.cluster.kube import KubeClient, read_namespace
    from prow_image_builder.controller import BuildReconciler, run_controller
    from prow_image_builder.jobspec import load_job_spec
    from prow_image_builder.types import UnitKey

    settings = get_settings()

    try:
        job_spec = load_job_spec()
        namespace = read_namespace(settings.service_account_dir)
    except ImageBuilderError as e:
        console.print(f"[red]Unable to resolve prow job: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    refs = job_spec.refs
    if refs is None:
        console.print("[red]Unable to resolve prow job: JOB_SPEC has no refs[/red]")
        raise typer.Exit(code=1)

    options = _build_options(
        docker_config_secret=docker_config_secret,
        org=refs.org,
        repo=refs.repo,
        head_sha=refs.head_sha,
        dockerfile=dockerfile,
        context=context,
        build_variant=variant,
        targets=targets,
        kaniko_args=kaniko_args,
        registry=registry,
        cache_registry=cache_registry,
        kaniko_image=kaniko_image,
        add_version_tag=add_version_tag,
        add_version_sha_tag=add_version_sha_tag,
        add_date_sha_tag=add_date_sha_tag,
        add_date_sha_tag_with_prefix=add_date_sha_tag_with_prefix,
        add_date_sha_tag_with_suffix=add_date_sha_tag_with_suffix,
        add_fixed_tags=add_fixed_tags,
        add_latest_tag=add_latest_tag,
        inject_effective_version=inject_effective_version,
    )

    if not options.caching_enabled:
        logger.info("cache-registry parameter is not set. Building without using cache")

    try:
        cluster = KubeClient.from_settings(settings)
    except ImageBuilderError as e:
        console.print(
            f"[red]Unable to configure cluster access: {escape(str(e))}[/red]"
        )
        raise typer.Exit(code=1) from None

    wakeup = threading.Event()
    driver_key = UnitKey(namespace, job_spec.prowjobid)
    logger.info("Starting build controller for pod %s", driver_key)

    with cluster:
        reconciler = BuildReconciler(
            cluster, driver_key, options, settings, on_stop=lambda _: wakeup.set()
        )
        error = run_controller(reconciler, wakeup=wakeup)

    if error is not None:
        console.print(f"[red]Build failed: {escape(str(error))}[/red]")
        raise typer.Exit(code=1)
    console.print("[green]Build succeeded[/green]")


__all__ = ["app"]
