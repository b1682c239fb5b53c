"""Shared type definitions for cork_kube.

This module contains enums and constants shared across subpackages to
avoid circular imports.
"""

from enum import Enum

# Registry used for non-production builds unless overridden
LOCAL_DEV_REGISTRY = "localhost/local-dev"

# Depth value meaning "every level of the graph"
DEPTH_ALL = "ALL"


class BuildStatus(str, Enum):
    """Status of a single image build."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class BatchMode(str, Enum):
    """How the executor reacts to a failed image build."""

    FAIL_FAST = "fail-fast"
    BEST_EFFORT = "best-effort"


class TagSelection(str, Enum):
    """Tag selection policy for a project."""

    AUTO = "auto"
    FORCE_TAG = "force-tag"
    FORCE_BRANCH = "force-branch"


class BuildType(str, Enum):
    """Build strategy declared by a repository descriptor."""

    CORK_BUILD_FILE = "cork-build-file"
    SOURCE_WRAPPER = "source-wrapper"


__all__ = [
    "DEPTH_ALL",
    "LOCAL_DEV_REGISTRY",
    "BatchMode",
    "BuildStatus",
    "BuildType",
    "TagSelection",
]
