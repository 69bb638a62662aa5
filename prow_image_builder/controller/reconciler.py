"""Build reconciler.

This module provides the reconcile tick of the image-builder:
- Fetch the driver pod
- Plan the build once (shared volume claim, variants, build units)
- Observe build pod phases and collect logs of finished pods
- Create the next build group, or stop the build

Ticks never block on build pods. The caller invokes ``reconcile()``
repeatedly (see :mod:`prow_image_builder.controller.loop`) and must not
run two ticks of the same reconciler concurrently.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING

from prow_image_builder.builds.destinations import (
    ReadText,
    VersionContext,
    read_file_text,
    utc_today,
)
from prow_image_builder.builds.logs import collect_unit_logs
from prow_image_builder.builds.plan import BuildPlan, BuildUnit, build_plan
from prow_image_builder.builds.pods import DriverPod, define_volume_claim
from prow_image_builder.builds.variants import load_variants
from prow_image_builder.cluster.client import (
    AlreadyExistsError,
    ClusterClient,
    NotFoundError,
)
from prow_image_builder.config import get_settings
from prow_image_builder.controller.state import (
    OrchestrationState,
    Step,
    apply_observation,
    decide,
    record_created,
)
from prow_image_builder.errors import (
    BuildFailedError,
    DriverNotFoundError,
    ImageBuilderError,
    RetryBudgetExceededError,
    UnitMissingError,
)
from prow_image_builder.types import BuildVariant, UnitKey, UnitPhase

if TYPE_CHECKING:
    from prow_image_builder.config import Settings
    from prow_image_builder.options import BuildOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Result of one reconcile tick.

    Attributes:
        requeue_after: Seconds until the next tick, None once terminated.
        error: Error of this tick, if any.
    """

    requeue_after: float | None
    error: Exception | None = None


def define_build_plan(
    driver: DriverPod,
    options: BuildOptions,
    settings: Settings,
    read_text: ReadText = read_file_text,
    today: date | None = None,
) -> BuildPlan:
    """Define the build units of a build from its options.

    The VERSION file and variants.yaml are read from the checkout of
    ``<source_root>/github.com/<org>/<repo>``.

    Args:
        driver: Driver pod.
        options: Build options.
        settings: Application settings.
        read_text: Reader for VERSION and variants files.
        today: Date for date based tags; defaults to the current date.

    Returns:
        The build plan.

    Raises:
        ConfigurationError: If variants or targets are unusable.
        MissingCloneConfigError: If the driver has no clonerefs config.
        InvalidSHAError: If SHA based tags are requested with a short SHA.
        EmptyVersionFileError: If the VERSION file is needed but unusable.
    """
    repo_dir: Path = settings.source_root / "github.com" / options.org / options.repo

    variants: list[BuildVariant] = []
    if options.variant_mode:
        variants = load_variants(
            repo_dir / options.context, options.build_variant, read_text
        )

    context = VersionContext(
        registry=options.registry,
        head_sha=options.head_sha,
        version_file=repo_dir / "VERSION",
        today=today or utc_today(),
        read_text=read_text,
    )

    return build_plan(
        driver,
        org=options.org,
        repo=options.repo,
        targets=options.targets,
        variants=variants,
        policy=options.tag_policy,
        context=context,
        dockerfile=options.dockerfile,
        build_context=options.context,
        kaniko_image=options.kaniko_image,
        kaniko_args=options.kaniko_args,
        docker_config_secret=options.docker_config_secret,
        cache_registry=options.cache_registry,
        variant_mode=options.variant_mode,
    )


class BuildReconciler:
    """Drives the build pods of one image-builder run."""

    def __init__(
        self,
        cluster: ClusterClient,
        driver_key: UnitKey,
        options: BuildOptions,
        settings: Settings | None = None,
        read_text: ReadText | None = None,
        today: date | None = None,
        on_stop: Callable[[Exception | None], None] | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            cluster: Cluster API client.
            driver_key: Namespace and name of the driver pod.
            options: Build options.
            settings: Application settings.
            read_text: Reader for VERSION and variants files.
            today: Date for date based tags; defaults to the current date.
            on_stop: Called once when the build terminates.
        """
        self.cluster = cluster
        self.driver_key = driver_key
        self.options = options
        self.settings = settings or get_settings()
        self.read_text = read_text or read_file_text
        self.today = today
        self.on_stop = on_stop
        self.state = OrchestrationState()

    @property
    def terminated(self) -> bool:
        """Whether the build is over."""
        return self.state.terminated

    @property
    def error(self) -> Exception | None:
        """Terminal error; None while running or on success."""
        return self.state.error

    def stop(self, error: Exception | None = None) -> None:
        """Terminate the build. Only the first call has an effect.

        Args:
            error: Terminal error, None for success.
        """
        if self.state.terminated:
            return
        self.state.terminated = True
        self.state.error = error
        if error is None:
            logger.info("Build completed successfully")
        else:
            logger.error("Build stopped: %s", error)
        if self.on_stop is not None:
            self.on_stop(error)

    def reconcile(self) -> ReconcileResult:
        """Run one reconcile tick.

        Errors are counted; after more than ``max_errors`` consecutive
        failures, or on a non-retryable error, the build is stopped.

        Returns:
            ReconcileResult with the requeue delay.
        """
        if self.state.terminated:
            logger.debug("Build terminated - skip reconciliation")
            return ReconcileResult(requeue_after=None)

        try:
            self._reconcile()
        except ImageBuilderError as e:
            return self._handle_error(e)

        self.state.error_count = 0
        if self.state.terminated:
            return ReconcileResult(requeue_after=None)
        return ReconcileResult(requeue_after=self.settings.reconcile_interval)

    def _handle_error(self, error: ImageBuilderError) -> ReconcileResult:
        if not error.retryable:
            logger.error("Unrecoverable error: %s", error)
            self.stop(error)
            return ReconcileResult(requeue_after=None, error=error)

        self.state.error_count += 1
        logger.error(
            "Error reconciling build pods (%d/%d): %s",
            self.state.error_count,
            self.settings.max_errors,
            error,
        )
        if self.state.error_count > self.settings.max_errors:
            logger.error("Too many errors, stopping build")
            self.stop(RetryBudgetExceededError(self.state.error_count, error))
            return ReconcileResult(requeue_after=None, error=error)
        return ReconcileResult(
            requeue_after=self.settings.reconcile_interval, error=error
        )

    def _reconcile(self) -> None:
        driver = self._get_driver()
        self.ensure_plan(driver)
        self.reconcile_units(driver)

    def _get_driver(self) -> DriverPod:
        try:
            manifest = self.cluster.get_pod(self.driver_key)
        except NotFoundError as e:
            logger.error(
                "Could not get image-builder pod %s - this should not happen",
                self.driver_key,
            )
            raise DriverNotFoundError(
                self.driver_key.namespace, self.driver_key.name
            ) from e
        return DriverPod.from_manifest(manifest)

    def ensure_plan(self, driver: DriverPod) -> BuildPlan:
        """Define the build units once.

        Creates the shared volume claim if needed, then builds the plan.

        Args:
            driver: Driver pod.

        Returns:
            The (memoized) build plan.
        """
        if self.state.plan:
            logger.debug("Build pods defined - skip")
            return self.state.plan

        logger.info("Start defining build pods")
        self._ensure_volume_claim(driver)
        self.state.plan = self._define_plan(driver)
        return self.state.plan

    def _ensure_volume_claim(self, driver: DriverPod) -> None:
        try:
            self.cluster.get_volume_claim(driver.key)
            return
        except NotFoundError:
            pass

        logger.info("Creating PVC for image build pods")
        claim = define_volume_claim(
            driver, self.settings.storage_class, self.settings.storage_size
        )
        try:
            self.cluster.create_volume_claim(claim)
        except AlreadyExistsError:
            logger.debug("PVC %s exists already", driver.key)

    def _define_plan(self, driver: DriverPod) -> BuildPlan:
        return define_build_plan(
            driver, self.options, self.settings, self.read_text, self.today
        )

    def reconcile_units(self, driver: DriverPod) -> None:
        """Observe build pods and advance the build.

        Args:
            driver: Driver pod owning the build pods.

        Raises:
            UnitMissingError: If started pods disappeared.
            ClusterError: If listing or creating pods fails.
        """
        pods = self.cluster.list_pods(driver.namespace, driver.uid)
        observed = {
            UnitKey.of(pod): UnitPhase.from_status((pod.get("status") or {}).get("phase"))
            for pod in pods
        }

        for unit in apply_observation(self.state, observed):
            collect_unit_logs(
                self.cluster, unit.key, unit.index, self.settings.artifacts_dir
            )

        decision = decide(self.state, listed=frozenset(observed))

        if decision.step == Step.WAIT:
            logger.debug("Waiting for build group %s", self.state.current_group)
        elif decision.step == Step.ABORT:
            logger.error(
                "%d failed build pods, stopping image-builder", len(decision.failed)
            )
            self.stop(BuildFailedError(list(decision.failed)))
        elif decision.step == Step.MISSING:
            raise UnitMissingError([u.name for u in decision.units])
        elif decision.step == Step.START:
            self._start_units(decision.units)
        elif decision.step == Step.FINISH:
            logger.info("Last build pods completed. Stopping build controller")
            self.stop(None)

    def _start_units(self, units: tuple[BuildUnit, ...]) -> None:
        if units:
            logger.info("Start creating build pods for build group %s", units[0].group_id)
        for unit in units:
            if self.state.terminated:
                logger.info("Build terminated - not creating build pod %s", unit.name)
                break
            try:
                self.cluster.create_pod(unit.spec)
                logger.info("Build pod %s created", unit.name)
            except AlreadyExistsError:
                logger.info("Build pod %s exists already", unit.name)
            record_created(self.state, unit)


__all__ = ["BuildReconciler", "ReconcileResult", "define_build_plan"]
