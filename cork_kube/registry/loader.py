"""Repository registry loading.

This module resolves where the repository registry lives (a local
directory, or a git repository cloned under the build root), reads every
descriptor from its ``repositories/`` directory and validates them.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from cork_kube.errors import RegistryError
from cork_kube.registry.schema import RepositoryDescriptor
from cork_kube.vcs.git import pull_repository

if TYPE_CHECKING:
    from cork_kube.config import BuildSection

logger = logging.getLogger(__name__)

REGISTRY_REPO_NAME = "cork-build-registry"
REGISTRY_REPO_URL = "https://github.com/ucd-library/cork-build-registry"
REGISTRY_REPO_BRANCH = "main"

GIT_URL_PATTERN = re.compile(r"^(https?://|git@)")


def is_git_url(location: str) -> bool:
    """Check whether a registry location is a git URL rather than a directory."""
    return bool(GIT_URL_PATTERN.match(location))


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        RegistryError: If the file is not valid JSON or not an object.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise RegistryError(f"Invalid JSON in registry file {path}: {e}") from e
    if not isinstance(data, dict):
        raise RegistryError(
            f"Expected a JSON object in {path}, got {type(data).__name__}"
        )
    return data


def load_descriptor(path: Path) -> RepositoryDescriptor:
    """Load and validate one repository descriptor file.

    Raises:
        RegistryError: If the file cannot be parsed or fails validation.
    """
    data = load_json(path)
    try:
        return RepositoryDescriptor.model_validate(data)
    except ValidationError as e:
        raise RegistryError(f"Invalid repository descriptor {path}:\n{e}") from e


def load_descriptors(registry_dir: Path) -> dict[str, RepositoryDescriptor]:
    """Read every ``repositories/*.json`` descriptor in a registry directory.

    Args:
        registry_dir: Registry root directory.

    Returns:
        Descriptors keyed by repository short name.

    Raises:
        RegistryError: If the repositories directory is missing or a file is invalid.
    """
    repos_dir = registry_dir / "repositories"
    if not repos_dir.is_dir():
        raise RegistryError(f"Registry repositories directory not found: {repos_dir}")

    descriptors: dict[str, RepositoryDescriptor] = {}
    for path in sorted(repos_dir.glob("*.json")):
        descriptor = load_descriptor(path)
        descriptors[descriptor.name] = descriptor

    logger.debug("Loaded %d repository descriptors from %s", len(descriptors), repos_dir)
    return descriptors


class RegistryLoader:
    """Locates and loads the repository registry once per session.

    Location precedence: explicit override (CLI flag, then the
    CORK_BUILD_REGISTRY setting) > config ``dependenciesDir`` > config
    ``registryUrl`` > the well-known registry repository.
    """

    def __init__(
        self,
        root_dir: Path,
        build_config: BuildSection,
        override: str | None = None,
    ) -> None:
        self.root_dir = root_dir
        self.build_config = build_config
        self.override = override
        self.registry_dir: Path | None = None
        self.registry_url: str | None = None
        self._descriptors: dict[str, RepositoryDescriptor] | None = None

    def resolve_location(self) -> tuple[str, bool]:
        """Return the configured registry location and whether it is a git URL."""
        if self.override:
            return self.override, is_git_url(self.override)
        if self.build_config.dependencies_dir:
            return self.build_config.dependencies_dir, False
        if self.build_config.registry_url:
            return self.build_config.registry_url, True
        return REGISTRY_REPO_URL, True

    def sync(self) -> Path:
        """Make the registry available locally and return its directory.

        Raises:
            RegistryError: If a configured local directory does not exist.
            GitError: If cloning or pulling the registry repository fails.
        """
        if self.registry_dir is not None:
            return self.registry_dir

        location, remote = self.resolve_location()
        if remote:
            registry_dir = self.root_dir / REGISTRY_REPO_NAME
            pull_repository(registry_dir, location, REGISTRY_REPO_BRANCH)
            self.registry_url = location
        else:
            registry_dir = Path(location).expanduser()
            if not registry_dir.is_dir():
                raise RegistryError(
                    f"Defined dependencies directory not found: {registry_dir}"
                )

        self.registry_dir = registry_dir
        return registry_dir

    def load(self) -> dict[str, RepositoryDescriptor]:
        """Load the registry, returning the cached result on repeated calls."""
        if self._descriptors is None:
            self._descriptors = load_descriptors(self.sync())
        return self._descriptors


__all__ = [
    "REGISTRY_REPO_NAME",
    "REGISTRY_REPO_URL",
    "RegistryLoader",
    "is_git_url",
    "load_descriptor",
    "load_descriptors",
    "load_json",
]
