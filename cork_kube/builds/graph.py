"""Build dependency graph construction.

This module expands a (project, version) request into the graph of
repositories it builds against, using the ``builds`` entries of the
registry descriptors:

- Keys of a build entry name dependency aliases, values the version of
  that dependency to build against
- ``secret.<name>`` keys instead set the version of a declared secret
- Each project is expanded once; later references share the same node

When two paths require different versions of the same project, the first
resolution is kept and the disagreement is recorded as a VersionConflict.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cork_kube.errors import GraphError
from cork_kube.registry.schema import SECRET_PREFIX, SecretRequirement
from cork_kube.vcs.git import normalize_repo_url, repo_name_from_url

if TYPE_CHECKING:
    from cork_kube.config import LocalRepo
    from cork_kube.registry.schema import RepositoryDescriptor

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class BuildGraphNode:
    """One project in a build graph.

    Attributes:
        name: Project short name.
        version: Version (branch or tag) to build.
        url: Repository URL.
        registry: Container registry declared by the descriptor.
        type: Build strategy declared by the descriptor.
        secrets: Secret requirements with resolved versions.
        local_dir: Registered local working copy, if any.
        dependencies: Direct dependencies keyed by project name.
    """

    name: str
    version: str
    url: str
    registry: str | None = None
    type: str | None = None
    secrets: list[SecretRequirement] = field(default_factory=list)
    local_dir: str | None = None
    dependencies: dict[str, BuildGraphNode] = field(default_factory=dict)


@dataclass
class VersionConflict:
    """Two paths in the graph require different versions of one project."""

    project: str
    resolved_version: str
    requested_version: str
    requested_by: str

    def __str__(self) -> str:
        return (
            f"{self.requested_by} requires {self.project} {self.requested_version}, "
            f"but {self.resolved_version} was already resolved"
        )


@dataclass
class BuildGraph:
    """Expanded build graph for a root project.

    Attributes:
        root: Name of the requested project.
        nodes: Every project in the graph keyed by name.
        conflicts: Version disagreements found during expansion.
    """

    root: str
    nodes: dict[str, BuildGraphNode] = field(default_factory=dict)
    conflicts: list[VersionConflict] = field(default_factory=list)

    @property
    def root_node(self) -> BuildGraphNode:
        return self.nodes[self.root]

    def __getitem__(self, name: str) -> BuildGraphNode:
        return self.nodes[name]

    def __contains__(self, name: object) -> bool:
        return name in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)


def find_local_dir(
    url: str,
    local_repos: Mapping[str, LocalRepo] | None,
    use_remote: Collection[str] = (),
) -> str | None:
    """Find a registered local working copy for a repository URL.

    Args:
        url: Repository URL.
        local_repos: Registered local repositories keyed by name.
        use_remote: Names or URLs that must be cloned even if registered.

    Returns:
        Local directory, or None when the remote repository should be used.
    """
    if not local_repos:
        return None
    normalized = normalize_repo_url(url)
    remote_urls = {normalize_repo_url(u) for u in use_remote if "/" in u}
    if normalized in remote_urls:
        return None
    for name, repo in local_repos.items():
        if name in use_remote:
            continue
        if normalize_repo_url(repo.url) == normalized:
            return repo.dir
    return None


class _GraphBuilder:
    def __init__(
        self,
        descriptors: Mapping[str, RepositoryDescriptor],
        local_repos: Mapping[str, LocalRepo] | None,
        use_remote: Collection[str],
        strict: bool,
    ) -> None:
        self.descriptors = descriptors
        self.local_repos = local_repos
        self.use_remote = use_remote
        self.strict = strict

    def expand(
        self,
        graph: BuildGraph,
        project: str,
        version: str,
        requested_by: str | None = None,
    ) -> BuildGraphNode:
        descriptor = self.descriptors.get(project)
        if descriptor is None:
            raise GraphError(f"Project {project} not found")

        node = graph.nodes.get(project)
        if node is not None:
            if node.version != version and requested_by is not None:
                conflict = VersionConflict(
                    project=project,
                    resolved_version=node.version,
                    requested_version=version,
                    requested_by=requested_by,
                )
                if self.strict:
                    raise GraphError(f"Version conflict: {conflict}")
                logger.warning("Version conflict: %s; keeping %s", conflict, node.version)
                graph.conflicts.append(conflict)
            # shared node: only fill attributes the first pass left empty
            node.type = node.type or descriptor.type
            node.registry = node.registry or descriptor.registry
            if not node.secrets and descriptor.secrets:
                node.secrets = [s.model_copy() for s in descriptor.secrets]
            return node

        build = descriptor.get_build(version)
        if build is None:
            options = ", ".join(descriptor.builds) or "(none)"
            raise GraphError(
                f"No build configuration found for {project} version {version}\n"
                f"  - Options: {options}"
            )

        node = BuildGraphNode(
            name=project,
            version=version,
            url=descriptor.repository,
            registry=descriptor.registry,
            type=descriptor.type,
            secrets=[s.model_copy() for s in descriptor.secrets],
            local_dir=find_local_dir(
                descriptor.repository, self.local_repos, self.use_remote
            ),
        )
        graph.nodes[project] = node

        for key, dep_version in build.items():
            if key.startswith(SECRET_PREFIX):
                self._annotate_secret(node, key[len(SECRET_PREFIX) :], dep_version)
                continue

            dep_url = descriptor.dependencies.get(key)
            if dep_url is None:
                raise GraphError(
                    f"Dependency {key} of {project} {version} has no repository "
                    f"in the dependencies map"
                )
            dep_name = repo_name_from_url(dep_url)
            node.dependencies[dep_name] = self.expand(
                graph, dep_name, dep_version, requested_by=project
            )

        return node

    @staticmethod
    def _annotate_secret(node: BuildGraphNode, name: str, version: str) -> None:
        for secret in node.secrets:
            if secret.name == name:
                secret.version = version
                return
        logger.warning("Secret %s is versioned for %s but not declared", name, node.name)


def get_build_graph(
    descriptors: Mapping[str, RepositoryDescriptor],
    project: str,
    version: str,
    local_repos: Mapping[str, LocalRepo] | None = None,
    use_remote: Collection[str] = (),
    strict: bool = False,
) -> BuildGraph:
    """Expand a project and version into its build graph.

    Args:
        descriptors: Registry descriptors keyed by project name.
        project: Root project name.
        version: Root project version.
        local_repos: Registered local working copies.
        use_remote: Project names or URLs to clone even if registered locally.
        strict: Raise instead of warning on version conflicts.

    Returns:
        BuildGraph rooted at ``project``.

    Raises:
        GraphError: If a project, build entry or dependency mapping is missing,
            or on a version conflict in strict mode.
    """
    builder = _GraphBuilder(descriptors, local_repos, use_remote, strict)
    graph = BuildGraph(root=project)
    builder.expand(graph, project, version)
    return graph


__all__ = [
    "BuildGraph",
    "BuildGraphNode",
    "VersionConflict",
    "find_local_dir",
    "get_build_graph",
]
