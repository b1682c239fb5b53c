"""Build ordering.

Flattens a build graph into the sequence in which projects are built:
dependencies before dependents, every project at most once, limited to the
requested number of graph levels.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from cork_kube.types import DEPTH_ALL, BuildType

if TYPE_CHECKING:
    from cork_kube.builds.graph import BuildGraph, BuildGraphNode
    from cork_kube.builds.manifest import BuildManifest
    from cork_kube.vcs.git import GitInfo

Depth = int | str


@dataclass(eq=False)
class BuildItem:
    """A project scheduled for building, or a direct dependency of one.

    Items are filled in stage by stage: clone (clone_dir), git metadata
    (git_info), manifest load (build_config, generated_files).

    Attributes:
        name: Project short name.
        type: Build strategy.
        registry: Registry declared by the repository descriptor.
        url: Repository URL (set when no local directory is used).
        version: Version required by the graph.
        local_dir: Registered local working copy.
        dependencies: Direct dependencies (without their own dependencies).
        clone_dir: Directory of the clone made for this build.
        git_info: Provenance of the working copy.
        build_config: Parsed .cork-build manifest.
        generated_files: Files written into the repository for the build,
            keyed by repository-relative path.
    """

    name: str
    type: str = BuildType.CORK_BUILD_FILE.value
    registry: str | None = None
    url: str | None = None
    version: str | None = None
    local_dir: str | None = None
    dependencies: dict[str, BuildItem] = field(default_factory=dict)
    clone_dir: Path | None = None
    git_info: GitInfo | None = None
    build_config: BuildManifest | None = None
    generated_files: dict[str, str] = field(default_factory=dict)

    @property
    def directory(self) -> Path:
        """Working copy used for the build (local directory or clone)."""
        if self.local_dir:
            return Path(self.local_dir)
        if self.clone_dir is None:
            raise ValueError(f"Project {self.name} has not been cloned")
        return self.clone_dir


def parse_depth(value: Depth | None) -> Depth:
    """Parse a depth option: a positive integer or ``ALL``.

    Raises:
        ValueError: If the value is neither.
    """
    if value is None:
        return 1
    if isinstance(value, str):
        if value.upper() == DEPTH_ALL:
            return DEPTH_ALL
        value = int(value)
    if value < 1:
        raise ValueError(f"Depth must be at least 1 or {DEPTH_ALL}, got {value}")
    return value


def _make_item(node: BuildGraphNode) -> BuildItem:
    item = BuildItem(
        name=node.name,
        type=node.type or BuildType.CORK_BUILD_FILE.value,
        registry=node.registry,
        version=node.version,
    )
    if node.local_dir:
        item.local_dir = node.local_dir
    else:
        item.url = node.url
    return item


def order_build_graph(
    graph: BuildGraph,
    depth: Depth = 1,
    use_registry: Collection[str] = (),
) -> list[BuildItem]:
    """Order a build graph for building.

    Traversal is depth-first post-order from the root, so dependencies come
    before their dependents. The root is level 1; projects first reached
    below ``depth`` are traversed but not returned. Projects listed in
    ``use_registry`` are never built; their images come from the registry.

    Args:
        graph: Build graph.
        depth: Number of levels to build, or ``ALL``.
        use_registry: Project names to take from the registry.

    Returns:
        Build items in build order.
    """
    depth = parse_depth(depth)
    order: list[BuildItem] = []
    visited: set[str] = set()
    refs: dict[str, BuildItem] = {}

    def dependency_ref(node: BuildGraphNode) -> BuildItem:
        if node.name not in refs:
            refs[node.name] = _make_item(node)
        return refs[node.name]

    def visit(node: BuildGraphNode, level: int) -> None:
        if node.name in use_registry or node.name in visited:
            return
        visited.add(node.name)

        for dep in node.dependencies.values():
            visit(dep, level + 1)

        item = _make_item(node)
        item.dependencies = {
            name: dependency_ref(dep) for name, dep in node.dependencies.items()
        }
        if depth == DEPTH_ALL or level <= int(depth):
            order.append(item)

    visit(graph.root_node, 1)
    return order


__all__ = ["BuildItem", "Depth", "order_build_graph", "parse_depth"]
