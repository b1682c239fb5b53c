"""Pydantic models for repository registry descriptors.

Each file under ``repositories/`` in the registry describes one buildable
repository: its URL, the repositories it may depend on, and for every
version (or ``*``) the versions of those dependencies it builds against.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cork_kube.vcs.git import repo_name_from_url

# Build entry keys with this prefix annotate secret versions
SECRET_PREFIX = "secret."

# Fallback build entry matching any version
WILDCARD_VERSION = "*"


class SecretRequirement(BaseModel):
    """A named secret a repository needs at build or deploy time.

    Attributes:
        name: Secret name.
        mappings: Free-form mapping information used by deploy tooling.
        version: Secret version, set from a ``secret.<name>`` build entry.
    """

    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1)
    mappings: Any = None
    version: str | None = None


class RepositoryDescriptor(BaseModel):
    """Descriptor of one repository in the registry.

    Attributes:
        repository: Canonical repository URL.
        dependencies: Dependency alias -> repository URL.
        builds: Version (or ``*``) -> {alias or ``secret.<name>`` -> version}.
        registry: Default container registry for the repository's images.
        type: Build strategy (``cork-build-file`` when unset).
        secrets: Secret requirements.
    """

    model_config = ConfigDict(extra="allow")

    repository: str = Field(min_length=1)
    dependencies: dict[str, str] = Field(default_factory=dict)
    builds: dict[str, dict[str, str]] = Field(default_factory=dict)
    registry: str | None = None
    type: str | None = None
    secrets: list[SecretRequirement] = Field(default_factory=list)

    @field_validator("builds", mode="before")
    @classmethod
    def stringify_versions(cls, v: Any) -> Any:
        """Accept numeric versions in build entries."""
        if not isinstance(v, dict):
            return v
        result: dict[Any, Any] = {}
        for version, entry in v.items():
            if isinstance(entry, dict):
                entry = {k: str(val) for k, val in entry.items()}
            elif entry is None:
                entry = {}
            result[str(version)] = entry
        return result

    @property
    def name(self) -> str:
        """Repository short name (URL basename)."""
        return repo_name_from_url(self.repository)

    def get_build(self, version: str | None) -> dict[str, str] | None:
        """Return the build entry for a version, falling back to ``*``."""
        if version and version in self.builds:
            return self.builds[version]
        return self.builds.get(WILDCARD_VERSION)

    def get_secret(self, name: str) -> SecretRequirement | None:
        """Return the secret requirement with the given name."""
        for secret in self.secrets:
            if secret.name == name:
                return secret
        return None


__all__ = [
    "SECRET_PREFIX",
    "WILDCARD_VERSION",
    "RepositoryDescriptor",
    "SecretRequirement",
]
