"""Build orchestration module.

This module handles:
- Build graph resolution from the repository registry
- Build ordering with depth limiting
- .cork-build manifest loading and template rendering
- docker buildx command synthesis and provenance files
- Running image builds and Cloud Build submission
"""

from cork_kube.builds.options import BuildOptions
from cork_kube.builds.service import BuildSession, plan_build, run_build_plan

__all__ = ["BuildOptions", "BuildSession", "plan_build", "run_build_plan"]
