"""Build command synthesis.

This module turns a loaded build item into ``docker buildx build``
commands, one per declared image:

- Registry selection (declared registry vs. local dev registry)
- Tag selection (override, git tag, git branch)
- Dockerfile resolution (including Dockerfile.dev for dev builds)
- Template variables for build options
- Command assembly with cache, label and output flags
"""

from __future__ import annotations

import os
import re
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from cork_kube.builds.manifest import ImageConfig, build_info_filename
from cork_kube.builds.options import BuildOptions
from cork_kube.builds.order import BuildItem
from cork_kube.builds.template import render_options
from cork_kube.errors import ManifestError, TagSelectionError
from cork_kube.types import TagSelection
from cork_kube.vcs.git import same_repo

PATCHED_DOCKERFILE_NAME = "corkbuild.Dockerfile"
DEV_DOCKERFILE_NAME = "Dockerfile.dev"

# Separator used when printing commands one flag group per line
LINE_CONTINUATION = " \\\n  "

WILDCARD = "*"


@dataclass(eq=False)
class ImageBuildSpec:
    """Everything needed to build one image.

    Attributes:
        project: Build item the image belongs to.
        name: Image name.
        context_path: Absolute build context.
        source_dockerfile: Dockerfile the build starts from.
        dockerfile: Patched Dockerfile passed to the builder.
        tag: Fully qualified ``registry/image:tag``.
        original_tag: Tag git would have given, when overridden.
        options: Rendered build options.
        dev_options: Rendered dev build options.
        is_dev_dockerfile: A Dockerfile.dev replaced the Dockerfile.
        no_build_info: Skip the provenance layer.
        user: User restored after the provenance layer.
        argv: Builder command vector.
        segments: argv grouped by flag, for display.
        generated_files: Absolute path -> content written before the build.
    """

    project: BuildItem
    name: str
    context_path: Path
    source_dockerfile: Path
    dockerfile: Path
    tag: str
    original_tag: str | None = None
    options: dict[str, list[str]] = field(default_factory=dict)
    dev_options: dict[str, list[str]] | None = None
    is_dev_dockerfile: bool = False
    no_build_info: bool = False
    user: str | None = None
    argv: list[str] = field(default_factory=list)
    segments: list[list[str]] = field(default_factory=list)
    generated_files: dict[Path, str] = field(default_factory=dict)

    @property
    def info_file(self) -> Path:
        """Provenance JSON written into the build context."""
        return self.context_path / build_info_filename(self.name)

    @property
    def display(self) -> str:
        """Command with one flag group per line."""
        return LINE_CONTINUATION.join(shlex.join(seg) for seg in self.segments)


def parse_tag_map(value: str | Mapping[str, str] | None) -> dict[str, str]:
    """Parse a per-project option value.

    ``"1.2.3"`` applies to every project (``{"*": "1.2.3"}``);
    ``"a=1,b=2"`` (comma or space separated) is per project.
    """
    if value is None:
        return {}
    if not isinstance(value, str):
        return dict(value)
    value = value.strip()
    if not value:
        return {}
    if "," not in value and "=" not in value:
        return {WILDCARD: value}

    result: dict[str, str] = {}
    for part in re.split(r"[,\s]+", value):
        if not part:
            continue
        key, _, val = part.partition("=")
        if not val:
            key, val = WILDCARD, key
        result[key.strip()] = val.strip()
    return result


def _lookup(mapping: Mapping[str, str], name: str) -> str | None:
    return mapping.get(name) or mapping.get(WILDCARD)


def resolve_registry(item: BuildItem, options: BuildOptions) -> str:
    """Select the registry for a project's images.

    Production builds and projects taken from the registry use the declared
    registry; everything else goes to the local development registry.

    Raises:
        ManifestError: If a declared registry is needed but missing.
    """
    if options.production or item.name in options.use_registry:
        registry = item.registry
        if not registry and item.build_config is not None:
            registry = item.build_config.registry
        if not registry:
            raise ManifestError(f"No registry defined for {item.name}")
        return registry
    return options.local_dev_registry


def resolve_tag(item: BuildItem, options: BuildOptions) -> tuple[str, str]:
    """Select the tag for a project's images.

    Precedence: override tag (project, then ``*``) > git tag unless
    ``force-branch`` > git branch unless ``force-tag``. A ``tag`` key in
    the build manifest has no effect. Projects taken from the registry use
    the graph version.

    Returns:
        Tuple of (tag, standard tag), the standard tag being what git
        metadata alone would give.

    Raises:
        TagSelectionError: If the selection policy cannot be satisfied.
    """
    if item.name in options.use_registry and item.version:
        return item.version, item.version

    override = _lookup(parse_tag_map(options.override_tag), item.name)
    selection = _lookup(parse_tag_map(options.tag_selection), item.name)

    git_tag = item.git_info.tag if item.git_info else ""
    git_branch = item.git_info.branch if item.git_info else ""
    standard = git_tag or git_branch

    if override:
        tag = override
    elif git_tag and selection != TagSelection.FORCE_BRANCH.value:
        tag = git_tag
    elif git_branch and selection != TagSelection.FORCE_TAG.value:
        tag = git_branch
    elif selection == TagSelection.FORCE_TAG.value:
        raise TagSelectionError(f"No tag for {item.name} and tag selection is force-tag")
    elif selection == TagSelection.FORCE_BRANCH.value:
        raise TagSelectionError(
            f"No branch for {item.name} and tag selection is force-branch"
        )
    else:
        raise TagSelectionError(f"No tag or branch for {item.name}")

    return tag, standard or tag


def label_prefix(project: str) -> str:
    """Return the label prefix for a project (``my-app`` -> ``MY_APP``)."""
    return re.sub(r"[^a-zA-Z0-9]", "_", project).upper()


def base_build_command(options: BuildOptions) -> list[str]:
    """Compose the ``docker buildx build`` invocation and global flags."""
    cmd = ["docker", "buildx", "build", "--cache-to=type=inline,mode=max"]
    if not options.cache:
        cmd.append("--no-cache")

    push = False
    if options.production:
        cmd.append("--pull")
        if options.push:
            push = True
            cmd.append("--push")
    if not push:
        cmd.append("--output=type=docker")

    if options.platform:
        cmd.extend(["--platform", options.platform])
    return cmd


def _dependency_url(dep: BuildItem) -> str | None:
    if dep.url:
        return dep.url
    if dep.git_info is not None:
        return dep.git_info.http_remote
    return None


def template_variables(
    item: BuildItem,
    options: BuildOptions,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build the variables available to a project's build options.

    Args:
        item: Build item with its own and its dependencies' manifests loaded.
        options: Build options.
        environ: Environment; defaults to os.environ.

    Returns:
        ``<alias>.<image>`` and ``<project>.<image>`` image references and
        ``ENV.<NAME>`` environment values.

    Raises:
        ManifestError: If a manifest repository is not a direct dependency.
    """
    if item.build_config is None:
        raise ManifestError(f"Build script not loaded for {item.name}")

    variables: dict[str, str] = {}

    for alias, url in item.build_config.repositories.items():
        dep = next(
            (
                d
                for d in item.dependencies.values()
                if same_repo(_dependency_url(d), url)
            ),
            None,
        )
        if dep is None:
            raise ManifestError(
                f"Repository {alias} ({url}) not found in build config "
                f"dependencies for {item.name}"
            )
        if dep.build_config is None:
            raise ManifestError(f"Build script not loaded for dependency {dep.name}")

        registry = resolve_registry(dep, options)
        for image_name in dep.build_config.images:
            tag, _ = resolve_tag(dep, options)
            variables[f"{alias}.{image_name}"] = f"{registry}/{image_name}:{tag}"

    registry = resolve_registry(item, options)
    for image_name in item.build_config.images:
        tag, _ = resolve_tag(item, options)
        variables[f"{item.name}.{image_name}"] = f"{registry}/{image_name}:{tag}"

    if environ is None:
        environ = os.environ
    for key, value in environ.items():
        variables[f"ENV.{key}"] = value

    return variables


def render_manifest(
    item: BuildItem,
    options: BuildOptions,
    environ: Mapping[str, str] | None = None,
) -> None:
    """Render template variables in every image's options, in place."""
    if item.build_config is None:
        raise ManifestError(f"Build script not loaded for {item.name}")

    variables = template_variables(item, options, environ)
    images = {}
    for image_name, image in item.build_config.images.items():
        update: dict[str, object] = {"options": render_options(image.options, variables)}
        if image.dev_options is not None:
            update["dev_options"] = render_options(image.dev_options, variables)
        images[image_name] = image.model_copy(update=update)
    item.build_config = item.build_config.model_copy(update={"images": images})


def resolve_dockerfile(
    item: BuildItem,
    image_name: str,
    image: ImageConfig,
    context_path: Path,
    production: bool,
) -> tuple[Path, bool]:
    """Resolve the Dockerfile an image builds from.

    Returns:
        Tuple of (path, is_dev_dockerfile).

    Raises:
        ManifestError: If the Dockerfile does not exist, or would clash with
            a generated one.
    """
    directory = item.directory

    if "Dockerfile" in item.generated_files and not image.dockerfile:
        dockerfile = (directory / "Dockerfile").resolve()
        dockerignore = (directory / ".dockerignore").resolve()
        if dockerfile.exists() or dockerignore.exists():
            raise ManifestError(
                f"Dockerfile path {dockerfile} or .dockerignore path {dockerignore} "
                f"already exists for {item.name}:{image_name}. This project is set "
                f"to use a generated Dockerfile and .dockerignore file. Please "
                f"remove the existing files and try again."
            )
        return dockerfile, False

    if image.dockerfile:
        dockerfile = (directory / image.dockerfile).resolve()
    else:
        dockerfile = context_path / "Dockerfile"

    dev_dockerfile = dockerfile.parent / DEV_DOCKERFILE_NAME
    if not production and dev_dockerfile.is_file():
        return dev_dockerfile, True

    if not dockerfile.is_file():
        raise ManifestError(
            f"Dockerfile path {dockerfile} not found for {item.name}:{image_name}"
        )
    return dockerfile, False


def synthesize_image(
    item: BuildItem,
    image_name: str,
    options: BuildOptions,
) -> ImageBuildSpec:
    """Assemble the build spec and command for one image.

    Args:
        item: Build item with its manifest loaded and rendered.
        image_name: Image declared in the manifest.
        options: Build options.

    Returns:
        ImageBuildSpec with argv ready to run.
    """
    if item.build_config is None:
        raise ManifestError(f"Build script not loaded for {item.name}")
    image = item.build_config.images[image_name]

    registry = resolve_registry(item, options)
    tag, standard_tag = resolve_tag(item, options)
    full_tag = f"{registry}/{image_name}:{tag}"

    context_path = (item.directory / image.context_path).resolve()
    source_dockerfile, is_dev = resolve_dockerfile(
        item, image_name, image, context_path, options.production
    )

    segments: list[list[str]] = [base_build_command(options)]

    prefix = label_prefix(item.name)
    commit = item.git_info.commit if item.git_info else ""
    segments.append(["--label", f"{prefix}_TAG={tag}"])
    segments.append(["--label", f"{prefix}_SHA={commit}"])

    if options.cache and options.cache_from:
        segments.append([f"--cache-from=type=registry,ref={full_tag}"])

    flags = image.dev_options if is_dev and image.dev_options else image.options
    for key, values in flags.items():
        for value in values:
            segments.append([f"--{key}", value])

    patched = source_dockerfile.parent / PATCHED_DOCKERFILE_NAME
    segments.append(["--tag", full_tag])
    segments.append(["--file", str(patched)])
    segments.append([str(context_path)])

    generated = {
        (item.directory / rel).resolve(): content
        for rel, content in item.generated_files.items()
    }

    return ImageBuildSpec(
        project=item,
        name=image_name,
        context_path=context_path,
        source_dockerfile=source_dockerfile,
        dockerfile=patched,
        tag=full_tag,
        original_tag=standard_tag if standard_tag != tag else None,
        options=image.options,
        dev_options=image.dev_options,
        is_dev_dockerfile=is_dev,
        no_build_info=image.no_build_info,
        user=image.user,
        argv=[token for seg in segments for token in seg],
        segments=segments,
        generated_files=generated,
    )


__all__ = [
    "DEV_DOCKERFILE_NAME",
    "PATCHED_DOCKERFILE_NAME",
    "ImageBuildSpec",
    "base_build_command",
    "label_prefix",
    "parse_tag_map",
    "render_manifest",
    "resolve_dockerfile",
    "resolve_registry",
    "resolve_tag",
    "synthesize_image",
    "template_variables",
]
