"""Build service module.

This module provides the high-level build API:
- BuildSession: per-invocation state (settings, config, registry cache,
  cloned repositories)
- plan_build(): registry -> graph -> order -> clone -> manifests -> commands
- run_build_plan(): run the image builds in dependency order

Typical use:

    session = BuildSession()
    plan = plan_build(session, options)
    report = run_build_plan(session, plan, options)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from cork_kube.builds.commands import ImageBuildSpec, render_manifest, synthesize_image
from cork_kube.builds.graph import BuildGraph, get_build_graph
from cork_kube.builds.manifest import load_build_manifest
from cork_kube.builds.order import BuildItem, order_build_graph
from cork_kube.builds.provenance import build_context_files
from cork_kube.builds.scheduler import run_scheduled
from cork_kube.config import get_settings, load_kube_config
from cork_kube.errors import CommandError, CorkKubeError, ImageBuildError, ManifestError
from cork_kube.registry.loader import RegistryLoader
from cork_kube.runner import run_command
from cork_kube.types import BuildStatus
from cork_kube.vcs.git import git_info, normalize_repo_url, pull_repository, repo_name_from_url

if TYPE_CHECKING:
    from cork_kube.builds.options import BuildOptions
    from cork_kube.config import KubeConfig, LocalRepo, Settings

logger = logging.getLogger(__name__)


class BuildFailedError(CorkKubeError):
    """Raised when one or more image builds failed."""

    def __init__(self, report: BuildReport, code: str = "build_failed") -> None:
        failed = [r for r in report.results if r.status == BuildStatus.FAILED]
        names = ", ".join(f"{r.project}:{r.image}" for r in failed)
        super().__init__(f"Build failed for {names}", code)
        self.report = report


class BuildSession:
    """State shared by every step of one build invocation.

    Attributes:
        settings: Application settings.
        kube_config: Loaded .cork-kube-config files.
        registry: Repository registry loader (caches the loaded registry).
        cloned: (url, version) pairs already synced in this session.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        kube_config: KubeConfig | None = None,
        registry_override: str | None = None,
    ) -> None:
        self.settings = settings if settings is not None else get_settings()
        self.kube_config = kube_config if kube_config is not None else load_kube_config()
        self.registry = RegistryLoader(
            self.settings.root_dir,
            self.kube_config.build,
            override=registry_override or self.settings.registry,
        )
        self.cloned: set[tuple[str, str]] = set()

    @property
    def local_repos(self) -> dict[str, LocalRepo]:
        return self.kube_config.build.local_repos

    @property
    def repos_dir(self) -> Path:
        return self.settings.root_dir / "repos"

    def clone(self, url: str, version: str) -> Path:
        """Sync a clone of ``url`` at ``version`` once per session.

        Returns:
            Clone directory.
        """
        directory = self.repos_dir / f"{repo_name_from_url(url)}-{version}"
        key = (normalize_repo_url(url), version)
        if key in self.cloned:
            return directory
        self.cloned.add(key)
        pull_repository(directory, url, version)
        return directory


@dataclass
class BuildPlan:
    """Resolved build: graph, project order and image commands."""

    graph: BuildGraph
    order: list[BuildItem]
    images: list[ImageBuildSpec]


@dataclass
class ImageResult:
    """Outcome of one image build."""

    project: str
    image: str
    tag: str
    status: BuildStatus
    duration: float = 0.0
    error_message: str | None = None


@dataclass
class BuildReport:
    """Outcome of a build run."""

    results: list[ImageResult] = field(default_factory=list)
    dry_run: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.status == BuildStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == BuildStatus.FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == BuildStatus.SKIPPED)


def format_duration(seconds: float) -> str:
    """Format a build duration (``42s``, ``1.50m``)."""
    whole = math.ceil(seconds)
    if whole > 60:
        return f"{whole / 60:.2f}m"
    return f"{whole}s"


def _prepare_item(session: BuildSession, item: BuildItem) -> None:
    """Clone (unless local) and read git metadata for an item, once."""
    if item.git_info is not None:
        return
    if not item.local_dir:
        if not item.url or not item.version:
            raise CorkKubeError(f"No repository or version to clone for {item.name}")
        item.clone_dir = session.clone(item.url, item.version)
    item.git_info = git_info(item.directory, item.version)


def plan_build(session: BuildSession, options: BuildOptions) -> BuildPlan:
    """Resolve everything needed to build a project.

    Args:
        session: Build session.
        options: Build options.

    Returns:
        BuildPlan with image specs in build order.

    Raises:
        CorkKubeError: On any configuration, git or templating error.
    """
    descriptors = session.registry.load()
    graph = get_build_graph(
        descriptors,
        options.project,
        options.version,
        local_repos=session.local_repos,
        use_remote=options.use_remote,
        strict=options.strict_versions,
    )
    order = order_build_graph(graph, options.depth, options.use_registry)
    logger.info(
        "Build order: %s", ", ".join(item.name for item in order) or "(nothing)"
    )

    for item in order:
        _prepare_item(session, item)
        for dep in item.dependencies.values():
            _prepare_item(session, dep)

    for item in order:
        for dep in item.dependencies.values():
            if dep.build_config is None:
                load_build_manifest(dep)
        load_build_manifest(item)
        render_manifest(item, options)

    images: list[ImageBuildSpec] = []
    for item in order:
        if item.build_config is None:
            raise ManifestError(f"Build script not loaded for {item.name}")
        for image_name in item.build_config.images:
            if options.filter and image_name not in options.filter:
                continue
            images.append(synthesize_image(item, image_name, options))

    return BuildPlan(graph=graph, order=order, images=images)


def _image_prerequisites(
    images: list[ImageBuildSpec],
    order: list[BuildItem],
) -> dict[ImageBuildSpec, list[ImageBuildSpec]]:
    """Each image waits for its previous sibling and all transitive dependency images.

    Dependencies are followed through projects with no planned images, so
    a filtered-out project does not hide what lies below it.
    """
    direct: dict[str, list[str]] = {
        item.name: list(item.dependencies) for item in order
    }
    for spec in images:
        direct.setdefault(spec.project.name, list(spec.project.dependencies))

    def reachable(name: str) -> set[str]:
        seen: set[str] = set()
        stack = list(direct.get(name, []))
        while stack:
            dep_name = stack.pop()
            if dep_name in seen or dep_name == name:
                continue
            seen.add(dep_name)
            stack.extend(direct.get(dep_name, []))
        return seen

    by_project: dict[str, list[ImageBuildSpec]] = {}
    prerequisites: dict[ImageBuildSpec, list[ImageBuildSpec]] = {}
    for spec in images:
        required: list[ImageBuildSpec] = []
        own = by_project.get(spec.project.name, [])
        if own:
            required.append(own[-1])
        deps = reachable(spec.project.name)
        for name, specs in by_project.items():
            if name in deps:
                required.extend(specs)
        prerequisites[spec] = required
        by_project.setdefault(spec.project.name, []).append(spec)
    return prerequisites


def build_image(spec: ImageBuildSpec) -> None:
    """Build one image with its provenance files in place.

    Raises:
        ImageBuildError: If the builder fails.
    """
    logger.info(
        "Building image %s for %s from: %s",
        spec.name,
        spec.project.name,
        spec.source_dockerfile,
    )
    logger.info("%s", spec.display)
    with build_context_files(spec):
        try:
            run_command(spec.argv, realtime=True)
        except CommandError as e:
            raise ImageBuildError(
                spec.project.name, spec.name, e.message, exit_code=e.exit_code
            ) from e


def run_build_plan(
    session: BuildSession,
    plan: BuildPlan,
    options: BuildOptions,
) -> BuildReport:
    """Run the image builds of a plan.

    Args:
        session: Build session.
        plan: Plan from plan_build().
        options: Build options (dry_run, mode, jobs).

    Returns:
        BuildReport when every image succeeded (or on a dry run).

    Raises:
        BuildFailedError: If any image failed; carries the report.
    """
    if options.dry_run:
        return BuildReport(
            results=[
                ImageResult(
                    project=spec.project.name,
                    image=spec.name,
                    tag=spec.tag,
                    status=BuildStatus.SKIPPED,
                )
                for spec in plan.images
            ],
            dry_run=True,
        )

    outcomes = run_scheduled(
        plan.images,
        _image_prerequisites(plan.images, plan.order),
        build_image,
        jobs=options.jobs,
        mode=options.mode,
    )

    report = BuildReport()
    for spec in plan.images:
        outcome = outcomes[spec]
        if outcome.error is not None:
            logger.error("%s", outcome.error.message)
        report.results.append(
            ImageResult(
                project=spec.project.name,
                image=spec.name,
                tag=spec.tag,
                status=outcome.status,
                duration=outcome.duration,
                error_message=outcome.error.message if outcome.error else None,
            )
        )

    if report.failed:
        raise BuildFailedError(report)
    return report


__all__ = [
    "BuildFailedError",
    "BuildPlan",
    "BuildReport",
    "BuildSession",
    "ImageResult",
    "build_image",
    "format_duration",
    "plan_build",
    "run_build_plan",
]
