"""Configuration settings for cork_kube.

Two layers of configuration are handled here:

- Settings: process settings parsed by pydantic-settings from environment
  variables with the CORK_BUILD_ prefix and defaults.
- KubeConfig: the user's ``.cork-kube-config`` JSON files (global in the
  home directory, optionally overlaid by a project-local file). Only the
  ``build`` section is interpreted by this package.

Configuration precedence: CLI flags > env vars > config files > defaults.
"""

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from cork_kube.errors import ConfigError
from cork_kube.types import LOCAL_DEV_REGISTRY

CONFIG_FILE_NAME = ".cork-kube-config"


def _default_root_dir() -> Path:
    """Return the default working directory for clones and the registry."""
    return Path.home() / ".cork-build"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the CORK_BUILD_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="CORK_BUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Registry location override (local directory or git URL)
    registry: str | None = Field(
        default=None,
        description="Repository registry location (directory or git URL)",
    )
    use_cache: bool | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "CORK_BUILD_USE_CACHE", "_CORK_BUILD_USE_CACHE", "use_cache"
        ),
        description="Force docker layer cache usage on or off",
    )

    @field_validator("use_cache", mode="before")
    @classmethod
    def parse_use_cache(cls, v: Any) -> Any:
        """Only the string ``true`` enables the cache; an empty value is unset."""
        if isinstance(v, str):
            v = v.strip().lower()
            return v == "true" if v else None
        return v

    # Paths
    root_dir: Path = Field(
        default_factory=_default_root_dir,
        description="Root directory for cloned repositories and the registry",
    )

    local_dev_registry: str | None = Field(
        default=None,
        description=f"Image registry for non-production builds (default {LOCAL_DEV_REGISTRY})",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Maximum concurrent image builds",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


class LocalRepo(BaseModel):
    """A locally checked-out working copy registered for builds."""

    model_config = ConfigDict(extra="ignore")

    dir: str
    url: str


class BuildSection(BaseModel):
    """The ``build`` section of a .cork-kube-config file."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    local_repos: dict[str, LocalRepo] = Field(default_factory=dict, alias="localRepos")
    dependencies_dir: str | None = Field(default=None, alias="dependenciesDir")
    registry_url: str | None = Field(default=None, alias="registryUrl")
    gcb_project: str | None = Field(default=None, alias="gcbProject")
    local_dev_registry: str | None = Field(default=None, alias="localDevRegistry")


def _load_json_file(path: Path) -> dict[str, Any] | None:
    """Load a JSON config file, returning None when it does not exist."""
    if not path.is_file():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a JSON object in {path}, got {type(data).__name__}")
    return data


class KubeConfig:
    """Global and local .cork-kube-config files.

    Attributes:
        global_file: Path of the home directory config file.
        local_file: Path of the project-local config file.
        global_data: Raw global config (empty dict when missing).
        local_data: Raw local config (None when missing).
        global_build: Build section of the global file (edited by the
            registration commands and written by save_global).
        build: Effective build section (global overlaid by local).
    """

    def __init__(
        self,
        local_file: Path | str | None = None,
        global_file: Path | None = None,
    ) -> None:
        if global_file is None:
            global_file = Path.home() / CONFIG_FILE_NAME
        if local_file is None:
            local_file = Path.cwd() / CONFIG_FILE_NAME
        local_file = Path(local_file)
        if not local_file.is_absolute():
            local_file = Path.cwd() / local_file
        if local_file.is_dir():
            local_file = local_file / CONFIG_FILE_NAME

        self.global_file = global_file
        self.local_file = local_file
        self.global_data: dict[str, Any] = _load_json_file(global_file) or {}
        self.local_data = (
            _load_json_file(local_file) if local_file != global_file else None
        )

        merged: dict[str, Any] = dict(self.global_data.get("build") or {})
        if self.local_data:
            merged.update(self.local_data.get("build") or {})
        try:
            self.global_build = BuildSection.model_validate(
                self.global_data.get("build") or {}
            )
            self.build = BuildSection.model_validate(merged)
        except ValidationError as e:
            raise ConfigError(f"Invalid build section in {CONFIG_FILE_NAME}: {e}") from e

    def save_global(self) -> None:
        """Write the build section back into the global config file.

        Keys outside the build section are preserved as read.
        """
        data = dict(self.global_data)
        data["build"] = self.global_build.model_dump(by_alias=True, exclude_none=True)
        self.global_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.global_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        self.global_data = data


def load_kube_config(local_file: Path | str | None = None) -> KubeConfig:
    """Load the effective .cork-kube-config.

    Args:
        local_file: Optional project-local config file or directory.

    Returns:
        KubeConfig instance.

    Raises:
        ConfigError: If a config file is not valid JSON or has a bad build section.
    """
    return KubeConfig(local_file=local_file)


__all__ = [
    "CONFIG_FILE_NAME",
    "BuildSection",
    "KubeConfig",
    "LocalRepo",
    "Settings",
    "get_settings",
    "load_kube_config",
    "print_settings_json",
]
