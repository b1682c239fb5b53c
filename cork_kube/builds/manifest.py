"""Pydantic models and loading for .cork-build manifests.

A manifest declares the images a repository builds:

    {
      "registry": "us-docker.pkg.dev/project/repo",
      "repositories": {"lib": "https://github.com/org/lib"},
      "images": {
        "app": {
          "contextPath": ".",
          "options": {"build-arg": ["BASE=${lib.lib-base}"]}
        }
      }
    }

Source-wrapper repositories have no manifest; one image wrapping the
repository sources is synthesized for them.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cork_kube.errors import ManifestError
from cork_kube.types import BuildType

if TYPE_CHECKING:
    from cork_kube.builds.order import BuildItem

MANIFEST_FILE_NAME = ".cork-build"

# Name of the provenance file written into an image's build context
BUILD_INFO_SUFFIX = ".cork-build.json"

SOURCE_WRAPPER_DOCKERIGNORE = """.git
corkbuild.Dockerfile
Dockerfile"""


def build_info_filename(image_name: str) -> str:
    """Return the provenance file name for an image."""
    return f"{image_name}{BUILD_INFO_SUFFIX}"


def _as_option_lists(v: Any) -> Any:
    if not isinstance(v, dict):
        return v
    return {
        key: [str(x) for x in value] if isinstance(value, list) else [str(value)]
        for key, value in v.items()
    }


class ImageConfig(BaseModel):
    """One image declared in a manifest.

    Attributes:
        context_path: Build context, relative to the repository root.
        dockerfile: Dockerfile path relative to the repository root.
        options: Extra ``docker buildx build`` flags (name -> values).
        dev_options: Flags used instead of options with a Dockerfile.dev.
        no_build_info: Skip the provenance layer.
        user: User restored after the provenance layer.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    context_path: str = Field(default=".", alias="contextPath")
    dockerfile: str | None = None
    options: dict[str, list[str]] = Field(default_factory=dict)
    dev_options: dict[str, list[str]] | None = Field(default=None, alias="devOptions")
    no_build_info: bool = Field(default=False, alias="noBuildInfo")
    user: str | None = None

    @field_validator("options", "dev_options", mode="before")
    @classmethod
    def promote_scalars(cls, v: Any) -> Any:
        """Promote scalar option values to one-element lists."""
        return _as_option_lists(v)


class BuildManifest(BaseModel):
    """Parsed .cork-build manifest.

    Attributes:
        registry: Registry for production images.
        repositories: Alias -> URL of repositories whose images are referenced.
        images: Image name -> image configuration, in build order.
    """

    model_config = ConfigDict(extra="ignore")

    registry: str | None = None
    repositories: dict[str, str] = Field(default_factory=dict)
    images: dict[str, ImageConfig] = Field(default_factory=dict)


def parse_manifest(data: dict[str, Any], source: str) -> BuildManifest:
    """Validate manifest data.

    Raises:
        ManifestError: If data does not match the schema.
    """
    try:
        return BuildManifest.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"Invalid build script {source}:\n{e}") from e


def source_wrapper_manifest(item: BuildItem) -> BuildManifest:
    """Synthesize the manifest of a source-wrapper repository.

    Also records the generated Dockerfile and .dockerignore on the item.
    """
    if item.git_info is None:
        raise ManifestError(f"Git metadata missing for source-wrapper {item.name}")

    image_name = item.git_info.name.lower()
    item.generated_files = {
        "Dockerfile": (
            "FROM alpine:latest\n"
            "\n"
            "RUN mkdir /src\n"
            "WORKDIR /src\n"
            "COPY . /src\n"
            f"RUN rm {build_info_filename(image_name)}\n"
        ),
        ".dockerignore": SOURCE_WRAPPER_DOCKERIGNORE,
    }
    return BuildManifest(
        registry=item.registry,
        images={image_name: ImageConfig(context_path=".")},
    )


def load_build_manifest(item: BuildItem) -> BuildManifest:
    """Load the manifest of a build item and store it on the item.

    Args:
        item: Build item with its working copy available.

    Returns:
        The parsed manifest.

    Raises:
        ManifestError: If the manifest is missing or invalid.
    """
    if item.type == BuildType.SOURCE_WRAPPER.value:
        item.build_config = source_wrapper_manifest(item)
        return item.build_config

    path = item.directory / MANIFEST_FILE_NAME
    if not path.is_file():
        name = item.git_info.name if item.git_info else item.name
        raise ManifestError(f"No build script ({path}) found for {name}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ManifestError(
            f"Error parsing build script {path} for {item.name}: {e}"
        ) from e
    if not isinstance(data, dict):
        raise ManifestError(f"Build script {path} for {item.name} is not a JSON object")

    item.build_config = parse_manifest(data, str(path))
    return item.build_config


__all__ = [
    "BUILD_INFO_SUFFIX",
    "MANIFEST_FILE_NAME",
    "BuildManifest",
    "ImageConfig",
    "build_info_filename",
    "load_build_manifest",
    "parse_manifest",
    "source_wrapper_manifest",
]
