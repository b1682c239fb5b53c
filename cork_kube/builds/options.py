"""Options controlling a build run."""

from dataclasses import dataclass, field

from cork_kube.builds.order import Depth
from cork_kube.types import LOCAL_DEV_REGISTRY, BatchMode


@dataclass
class BuildOptions:
    """Options for planning and running a build.

    Attributes:
        project: Root project name.
        version: Root project version.
        production: Use real registries, pull base images and push.
        push: Push production images (ignored for dev builds).
        use_remote: Project names or URLs cloned even if registered locally.
        use_registry: Projects whose images are taken from their registry.
        dry_run: Print build commands without running them.
        tag_selection: ``force-tag``/``force-branch``, optionally per project
            (``proj=force-tag,*=force-branch``).
        override_tag: Tag override, optionally per project (``proj=1.2.3``).
        filter: Image names to build (all when empty).
        depth: Graph levels to build, or ``ALL``.
        cache: Use the docker layer cache.
        cache_from: Add ``--cache-from`` for the image's own tag.
        platform: Target platform passed to buildx.
        local_dev_registry: Registry for non-production builds.
        mode: Reaction to a failed image.
        jobs: Maximum images built concurrently.
        strict_versions: Fail on version conflicts in the graph.
    """

    project: str
    version: str
    production: bool = False
    push: bool = True
    use_remote: list[str] = field(default_factory=list)
    use_registry: list[str] = field(default_factory=list)
    dry_run: bool = False
    tag_selection: str | None = None
    override_tag: str | None = None
    filter: list[str] = field(default_factory=list)
    depth: Depth = 1
    cache: bool = True
    cache_from: bool = True
    platform: str | None = None
    local_dev_registry: str = LOCAL_DEV_REGISTRY
    mode: BatchMode = BatchMode.FAIL_FAST
    jobs: int = 1
    strict_versions: bool = False


__all__ = ["BuildOptions"]
