"""Prow Image Builder - kaniko build orchestration for prow jobs.

This package drives a set of ephemeral kaniko build pods from inside a
prow job pod: it plans the builds, creates them group by group, watches
their phases, and collects their logs as job artifacts.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
