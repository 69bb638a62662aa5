"""Controller run loop.

Repeats reconcile ticks until the build terminates. Between ticks the
loop waits on a ``threading.Event`` so that termination, from a tick or
from a signal, ends the wait right away.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager, nullcontext
from types import FrameType
from typing import TYPE_CHECKING

from prow_image_builder.errors import InterruptedBuildError

if TYPE_CHECKING:
    from prow_image_builder.controller.reconciler import BuildReconciler

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@contextmanager
def _stop_on_signals(
    reconciler: BuildReconciler, wakeup: threading.Event
) -> Iterator[None]:
    def handler(signum: int, frame: FrameType | None) -> None:
        name = signal.Signals(signum).name
        logger.warning("Received %s, stopping build", name)
        reconciler.stop(InterruptedBuildError(name))
        wakeup.set()

    # Signal handlers can only be installed from the main thread
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = {sig: signal.signal(sig, handler) for sig in HANDLED_SIGNALS}
    try:
        yield
    finally:
        for sig, prev in previous.items():
            signal.signal(sig, prev)


def run_controller(
    reconciler: BuildReconciler,
    wakeup: threading.Event | None = None,
    install_signal_handlers: bool = True,
) -> Exception | None:
    """Run reconcile ticks until the build terminates.

    Args:
        reconciler: Reconciler of the build.
        wakeup: Event interrupting the wait between ticks; created if not
            given.
        install_signal_handlers: Stop the build on SIGINT and SIGTERM.

    Returns:
        Terminal error of the build, None on success.
    """
    wakeup = wakeup or threading.Event()

    guard: AbstractContextManager[None] = (
        _stop_on_signals(reconciler, wakeup)
        if install_signal_handlers
        else nullcontext()
    )

    with guard:
        while not reconciler.terminated:
            result = reconciler.reconcile()
            if result.requeue_after is None or reconciler.terminated:
                break
            logger.debug("Next reconciliation in %.0fs", result.requeue_after)
            wakeup.wait(result.requeue_after)
            wakeup.clear()

    return reconciler.error


__all__ = ["HANDLED_SIGNALS", "run_controller"]
