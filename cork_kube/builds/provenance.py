"""Provenance files written into an image's build context.

Before an image is built this module writes:
- ``<image>.cork-build.json`` into the build context, holding git remote,
  commit, tag, branch, date and the final image tag
- ``corkbuild.Dockerfile`` next to the source Dockerfile: the source plus a
  layer copying the JSON to ``/cork-build-info/<image>.json``
- generated Dockerfile/.dockerignore for source-wrapper repositories

All of them are removed again when the build finishes, successfully or not.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cork_kube.errors import ManifestError

if TYPE_CHECKING:
    from cork_kube.builds.commands import ImageBuildSpec

logger = logging.getLogger(__name__)

BUILD_INFO_DIR = "/cork-build-info"


def build_info(spec: ImageBuildSpec) -> dict[str, Any]:
    """Return the provenance record of an image."""
    git_info = spec.project.git_info
    info: dict[str, Any] = git_info.to_provenance() if git_info else {}
    info["imageTag"] = spec.tag
    return info


def patch_dockerfile(dockerfile: str, spec: ImageBuildSpec) -> str:
    """Append the provenance layer to a Dockerfile's content."""
    if spec.no_build_info:
        return dockerfile
    lines = [
        "",
        "# Copy git info",
        "USER root",
        f"RUN mkdir -p {BUILD_INFO_DIR}",
        f"COPY {spec.info_file.name} {BUILD_INFO_DIR}/{spec.name}.json",
    ]
    if spec.user:
        lines.append(f"USER {spec.user}")
    return dockerfile.rstrip("\n") + "\n" + "\n".join(lines) + "\n"


def _write(path: Path, content: str, written: list[Path]) -> None:
    path.write_text(content, encoding="utf-8")
    written.append(path)


@contextmanager
def build_context_files(spec: ImageBuildSpec) -> Iterator[list[Path]]:
    """Write the provenance files for an image, removing them on exit.

    Args:
        spec: Image build spec.

    Yields:
        Paths of the files written.

    Raises:
        ManifestError: If the build context does not exist.
    """
    written: list[Path] = []
    try:
        if not spec.context_path.is_dir():
            raise ManifestError(
                f"Context path {spec.context_path} not found for "
                f"{spec.project.name}:{spec.name}"
            )

        for path, content in spec.generated_files.items():
            _write(path, content, written)

        _write(spec.info_file, json.dumps(build_info(spec), indent=2), written)

        source = spec.source_dockerfile.read_text(encoding="utf-8")
        _write(spec.dockerfile, patch_dockerfile(source, spec), written)

        yield written
    finally:
        for path in written:
            path.unlink(missing_ok=True)
        logger.debug("Removed %d build context files for %s", len(written), spec.name)


__all__ = ["BUILD_INFO_DIR", "build_context_files", "build_info", "patch_dockerfile"]
