"""Build controller.

This module provides:
- The orchestration state and its transition rules
- The reconcile tick driving the build pods
- The run loop repeating ticks until the build terminates
"""

from prow_image_builder.controller.loop import run_controller
from prow_image_builder.controller.reconciler import BuildReconciler, ReconcileResult

__all__ = ["BuildReconciler", "ReconcileResult", "run_controller"]
