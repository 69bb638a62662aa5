"""Build planning module.

This module handles:
- Build pod naming
- Destination tag resolution
- Build variant loading
- Pod and volume claim manifests
- Build plan construction
- Build log collection
"""

from prow_image_builder.builds.plan import BuildPlan, BuildUnit

__all__ = ["BuildPlan", "BuildUnit"]
