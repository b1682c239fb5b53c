"""Google Cloud Build submission.

Builds can run remotely: the registry repository ships Cloud Build
configurations under ``gcloud/`` that run ``cork-kube build exec`` inside
Cloud Build. This module composes the ``gcloud builds submit`` command,
optionally prepending extra build steps from a YAML file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from cork_kube.builds.graph import get_build_graph
from cork_kube.builds.order import Depth
from cork_kube.errors import ConfigError
from cork_kube.runner import run_command

if TYPE_CHECKING:
    from cork_kube.builds.service import BuildSession

logger = logging.getLogger(__name__)

DEFAULT_GCB_PROJECT = "digital-ucdavis-edu"
CLOUDBUILD_FILE = "cloudbuild.yaml"
CLOUDBUILD_HIGHCPU_FILE = "cloudbuild-highcpu.yaml"
MERGED_BUILD_FILE = "cork-build-tmp.yaml"


@dataclass
class CloudBuildRequest:
    """Options for a Cloud Build submission."""

    project: str
    version: str
    gcb_project: str | None = None
    cache: bool = True
    high_cpu: bool = False
    depth: Depth = 1
    prepend_build_steps: Path | None = None
    dry_run: bool = False


@dataclass
class CloudBuildSubmission:
    """A composed (and possibly submitted) Cloud Build.

    Attributes:
        command: ``gcloud builds submit`` argument vector.
        build_file: Cloud Build configuration used.
        build_file_content: Content of the configuration (set on dry runs).
    """

    command: list[str]
    build_file: Path
    build_file_content: str | None = None


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def merge_build_steps(build_file: Path, prepend_file: Path) -> dict[str, Any]:
    """Return the build configuration with the prepend file's steps first.

    Raises:
        ConfigError: If either file is not a YAML mapping.
    """
    existing = _load_yaml(build_file)
    prepend = _load_yaml(prepend_file)
    existing["steps"] = list(prepend.get("steps") or []) + list(
        existing.get("steps") or []
    )
    return existing


def compose_submit_command(
    build_file: Path,
    gcb_project: str,
    substitutions: list[tuple[str, str]],
) -> list[str]:
    """Compose the ``gcloud builds submit`` command."""
    subs = ",".join(f"{key}={value}" for key, value in substitutions)
    return [
        "gcloud",
        "builds",
        "submit",
        "--no-source",
        f"--config={build_file}",
        f"--project={gcb_project}",
        f"--substitutions={subs}",
    ]


def submit_cloud_build(
    session: BuildSession,
    request: CloudBuildRequest,
) -> CloudBuildSubmission:
    """Submit a project build to Google Cloud Build.

    The build graph is resolved locally first so unknown projects or
    versions fail before anything is submitted.

    Args:
        session: Build session.
        request: Submission options.

    Returns:
        CloudBuildSubmission describing the command.

    Raises:
        ConfigError: If the Cloud Build or prepend file is missing.
        GraphError: If the project or version is unknown.
        CommandError: If gcloud fails.
    """
    descriptors = session.registry.load()
    get_build_graph(descriptors, request.project, request.version)

    gcb_project = (
        request.gcb_project or session.kube_config.build.gcb_project or DEFAULT_GCB_PROJECT
    )
    logger.info("Submitting build to Google Cloud project: %s", gcb_project)

    registry_dir = session.registry.sync()
    filename = CLOUDBUILD_HIGHCPU_FILE if request.high_cpu else CLOUDBUILD_FILE
    build_file = registry_dir / "gcloud" / filename
    if not build_file.is_file():
        raise ConfigError(f"Google Cloud build file not found: {build_file}")

    merged_file: Path | None = None
    if request.prepend_build_steps is not None:
        prepend = request.prepend_build_steps.expanduser().resolve()
        if not prepend.is_file():
            raise ConfigError(f"Prepend build steps file not found: {prepend}")
        merged = merge_build_steps(build_file, prepend)
        merged_file = build_file.parent / MERGED_BUILD_FILE
        with open(merged_file, "w", encoding="utf-8") as f:
            yaml.safe_dump(merged, f, default_flow_style=False, sort_keys=False)

    config_file = merged_file or build_file
    substitutions = [
        ("_PROJECT", request.project),
        ("_VERSION", request.version),
        ("_REGISTRY", session.registry.registry_url or ""),
        ("_USE_CACHE", "true" if request.cache else "false"),
        ("_DEPTH", str(request.depth)),
    ]
    command = compose_submit_command(config_file, gcb_project, substitutions)
    submission = CloudBuildSubmission(command=command, build_file=config_file)

    try:
        if request.dry_run:
            submission.build_file_content = config_file.read_text(encoding="utf-8")
        else:
            run_command(command, realtime=True)
    finally:
        if merged_file is not None:
            merged_file.unlink(missing_ok=True)

    return submission


__all__ = [
    "DEFAULT_GCB_PROJECT",
    "CloudBuildRequest",
    "CloudBuildSubmission",
    "compose_submit_command",
    "merge_build_steps",
    "submit_cloud_build",
]
