"""Orchestration state and transition rules.

The controller keeps one OrchestrationState per build. Each reconcile
tick feeds the pod phases listed by the cluster into
:func:`apply_observation` and asks :func:`decide` what to do next.
``decide`` only looks at the state, so the same observations always
lead to the same decision.

Only one build group is in flight at a time: the next group is started
once every started unit is terminal and none of them failed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from prow_image_builder.builds.plan import BuildPlan, BuildUnit
from prow_image_builder.types import UnitKey, UnitPhase

logger = logging.getLogger(__name__)


class Step(str, Enum):
    """What the controller does after a tick's observations."""

    WAIT = "wait"
    START = "start"
    ABORT = "abort"
    FINISH = "finish"
    MISSING = "missing"


@dataclass(frozen=True)
class Decision:
    """Outcome of :func:`decide`.

    Attributes:
        step: Action to take.
        units: Units to create (START) or units not found (MISSING).
        failed: Names of failed units (ABORT).
    """

    step: Step
    units: tuple[BuildUnit, ...] = ()
    failed: tuple[str, ...] = ()


@dataclass
class OrchestrationState:
    """Progress of one build.

    Attributes:
        plan: Build units, empty until planned.
        phases: Last observed phase per started unit.
        cursor: Index of the first unit not created yet.
        error_count: Consecutive failed ticks.
        terminated: Whether the build is over.
        error: Terminal error, None on success.
    """

    plan: BuildPlan = field(default_factory=BuildPlan)
    phases: dict[UnitKey, UnitPhase] = field(default_factory=dict)
    cursor: int = 0
    error_count: int = 0
    terminated: bool = False
    error: Exception | None = None

    @property
    def started(self) -> tuple[BuildUnit, ...]:
        """Units created so far."""
        return self.plan.units[: self.cursor]

    @property
    def current_group(self) -> str | None:
        """Group of the most recently created unit."""
        if self.cursor == 0:
            return None
        return self.plan[self.cursor - 1].group_id

    def phase_of(self, unit: BuildUnit) -> UnitPhase:
        """Last observed phase of a started unit."""
        return self.phases.get(unit.key, UnitPhase.PENDING)


def apply_observation(
    state: OrchestrationState,
    observed: Mapping[UnitKey, UnitPhase],
) -> list[BuildUnit]:
    """Record the phases listed by the cluster.

    Only started units are tracked. A unit that reached a terminal phase
    keeps it.

    Args:
        state: State to update in place.
        observed: Phase per listed pod.

    Returns:
        Units that entered a terminal phase with this observation.
    """
    newly_terminal: list[BuildUnit] = []
    for unit in state.started:
        phase = observed.get(unit.key)
        if phase is None:
            continue
        previous = state.phases.get(unit.key)
        if previous == phase or (previous is not None and previous.is_terminal):
            continue
        logger.info("Build pod %s entered phase %s", unit.name, phase.value)
        state.phases[unit.key] = phase
        if phase.is_terminal:
            newly_terminal.append(unit)
    return newly_terminal


def record_created(state: OrchestrationState, unit: BuildUnit) -> None:
    """Track a unit that has been created in the cluster.

    Args:
        state: State to update in place.
        unit: The next unit of the plan.

    Raises:
        ValueError: If ``unit`` is not the unit at the cursor.
    """
    if state.cursor >= len(state.plan) or state.plan[state.cursor] is not unit:
        raise ValueError(f"unit {unit.name} is not the next unit of the plan")
    state.phases.setdefault(unit.key, UnitPhase.PENDING)
    state.cursor += 1


def _remaining_group(state: OrchestrationState, start: int) -> tuple[BuildUnit, ...]:
    return state.plan.units[start : state.plan.group_end(start)]


def decide(
    state: OrchestrationState,
    listed: frozenset[UnitKey] | set[UnitKey] | None = None,
) -> Decision:
    """Decide the next action from the current state.

    Args:
        state: Current state, with this tick's observations applied.
        listed: Keys of the pods the cluster listed this tick; units
            missing from it cannot be waited for.

    Returns:
        The decision.
    """
    if state.terminated:
        return Decision(Step.WAIT)

    started = state.started
    failed = tuple(u.name for u in started if state.phase_of(u) == UnitPhase.FAILED)

    # An earlier tick created only part of the current group
    if (
        not failed
        and 0 < state.cursor < len(state.plan)
        and state.plan[state.cursor].group_id == state.current_group
    ):
        return Decision(Step.START, units=_remaining_group(state, state.cursor))

    active = [u for u in started if not state.phase_of(u).is_terminal]
    if listed is not None:
        running = [u for u in active if u.key in listed]
        missing = tuple(u for u in active if u.key not in listed)
    else:
        running, missing = active, ()

    if running:
        return Decision(Step.WAIT)

    if failed:
        return Decision(Step.ABORT, failed=failed)

    if missing:
        return Decision(Step.MISSING, units=missing)

    if state.cursor < len(state.plan):
        return Decision(Step.START, units=_remaining_group(state, state.cursor))

    return Decision(Step.FINISH)


__all__ = [
    "Decision",
    "OrchestrationState",
    "Step",
    "apply_observation",
    "decide",
    "record_created",
]
