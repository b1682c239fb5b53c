"""Thin CLI wrapper for cork_kube.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler

from cork_kube import __version__
from cork_kube.config import get_settings, print_settings_json

if TYPE_CHECKING:
    from cork_kube.builds.service import BuildPlan, BuildReport

app = typer.Typer(
    name="cork-kube",
    help="cork-kube - Kubernetes environment and multi-repository image builds",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"cork-kube version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def split_list(value: str | None) -> list[str]:
    """Split a comma or space separated option value."""
    if not value:
        return []
    return [part for part in value.replace(",", " ").split() if part]


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging"),
    ] = False,
) -> None:
    """cork-kube - Kubernetes environment and multi-repository image builds."""
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    from cork_kube.types import LOCAL_DEV_REGISTRY

    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
    else:
        use_cache = "(default)" if settings.use_cache is None else settings.use_cache
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Root directory:      {settings.root_dir}")
        console.print(f"  Build registry:      {settings.registry or '(from .cork-kube-config)'}")
        console.print()
        console.print("[bold]Build:[/bold]")
        console.print(
            f"  Local dev registry:  {settings.local_dev_registry or LOCAL_DEV_REGISTRY}"
        )
        console.print(f"  Use cache:           {use_cache}")
        console.print(f"  Max builds:          {settings.max_concurrent_builds}")
        console.print(f"  Log level:           {settings.log_level}")


build_app = typer.Typer(help="Build project images across repositories")
app.add_typer(build_app, name="build")


def _print_plan(plan: "BuildPlan") -> None:
    """Print the projects and images a plan will build."""
    console.print()
    console.print("[bold]*** Build Summary: ***[/bold]")
    console.print()
    console.print("[bold]Projects to build:[/bold]")
    for item in plan.order:
        if item.build_config is None:
            continue
        console.print(f"  [green]{item.name}[/green]")
        if item.local_dir:
            console.print(f"    - Local Directory: {item.local_dir}")
        else:
            console.print(f"    - Clone Directory: {item.clone_dir}")
        if item.git_info is not None:
            console.print(f"    - Repository: {item.git_info.remote}")
            console.print(f"    - Tag: {item.git_info.tag}")
            console.print(f"    - Branch: {item.git_info.branch}")
            console.print(f"    - Commit: {item.git_info.commit}")

    console.print()
    console.print("[bold]Images to build:[/bold]")
    for spec in plan.images:
        console.print(f"  {spec.project.name}: {spec.name}")
        original = f" (original tag: {spec.original_tag})" if spec.original_tag else ""
        console.print(f"    - Tag: {spec.tag}{original}")

    if plan.graph.conflicts:
        console.print()
        console.print("[yellow]Version conflicts (first resolution kept):[/yellow]")
        for conflict in plan.graph.conflicts:
            console.print(f"  - {conflict}")

    console.print()
    console.print("[bold]***********************[/bold]")


def _print_report(report: "BuildReport") -> None:
    """Print per-image results with durations."""
    from cork_kube.builds.service import format_duration
    from cork_kube.types import BuildStatus

    console.print()
    console.print("[bold]*** Build Summary: ***[/bold]")
    for r in report.results:
        if r.status == BuildStatus.SUCCEEDED:
            console.print(f"  [green]✓ {r.tag} ({format_duration(r.duration)})[/green]")
        elif r.status == BuildStatus.FAILED:
            console.print(f"  [red]✗ {r.tag} ({format_duration(r.duration)})[/red]")
            if r.error_message:
                console.print(f"      Error: {r.error_message}")
        else:
            console.print(f"  [yellow]- {r.tag} (not built)[/yellow]")


@build_app.command("exec")
def build_exec(
    project: Annotated[str, typer.Option("--project", "-p", help="Project name")],
    version: Annotated[str, typer.Option("--version", "-v", help="Version to build")],
    production: Annotated[
        bool,
        typer.Option(
            "--production",
            "-m",
            help="Production build. Use real registry names and push images",
        ),
    ] = False,
    push: Annotated[
        bool,
        typer.Option("--push/--no-push", help="Push production images"),
    ] = True,
    use_remote: Annotated[
        str | None,
        typer.Option(
            "--use-remote",
            "-r",
            help="Use remote git repositories instead of registered local ones "
            "(comma separated names or URLs)",
        ),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-d", help="Just print the docker build commands"),
    ] = False,
    tag_selection: Annotated[
        str | None,
        typer.Option(
            "--tag-selection",
            "-s",
            help="force-tag or force-branch, or comma separated project=selection",
        ),
    ] = None,
    override_tag: Annotated[
        str | None,
        typer.Option(
            "--override-tag",
            "-o",
            help="Override tag, or comma separated project=tag",
        ),
    ] = None,
    image_filter: Annotated[
        str | None,
        typer.Option("--filter", "-f", help="Comma separated image names to build"),
    ] = None,
    depth: Annotated[
        str,
        typer.Option("--depth", help="Dependency levels to build, or ALL"),
    ] = "1",
    use_registry: Annotated[
        str | None,
        typer.Option(
            "--use-registry",
            help="Comma separated projects whose images come from their registry",
        ),
    ] = None,
    cork_build_registry: Annotated[
        str | None,
        typer.Option("--cork-build-registry", help="Override the build registry location"),
    ] = None,
    local_dev_registry: Annotated[
        str | None,
        typer.Option("--local-dev-registry", help="Registry for non-production images"),
    ] = None,
    cache: Annotated[
        bool,
        typer.Option("--cache/--no-cache", help="Use the docker layer cache"),
    ] = True,
    cache_from: Annotated[
        bool,
        typer.Option("--cache-from/--no-cache-from", help="Use --cache-from"),
    ] = True,
    platform: Annotated[
        str | None,
        typer.Option("--platform", help="Target platform"),
    ] = None,
    mode: Annotated[
        str,
        typer.Option("--mode", help="Batch mode: fail-fast (default) or best-effort"),
    ] = "fail-fast",
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", help="Images built concurrently", min=1),
    ] = None,
    strict_versions: Annotated[
        bool,
        typer.Option("--strict-versions", help="Fail on dependency version conflicts"),
    ] = False,
) -> None:
    """Build a project and its dependencies."""
    from cork_kube.builds.options import BuildOptions
    from cork_kube.builds.order import parse_depth
    from cork_kube.builds.service import (
        BuildFailedError,
        BuildSession,
        plan_build,
        run_build_plan,
    )
    from cork_kube.errors import CorkKubeError
    from cork_kube.types import LOCAL_DEV_REGISTRY, BatchMode

    settings = get_settings()

    try:
        batch_mode = BatchMode(mode)
        build_depth = parse_depth(depth)
    except ValueError as e:
        console.print(f"[red]Invalid option: {e}[/red]")
        raise typer.Exit(code=1) from None

    if production:
        # only the current project is built in production
        build_depth = 1
        if not push:
            console.print(
                "[yellow]Using --no-push. Images will not be pushed to the registry[/yellow]"
            )

    if settings.use_cache is not None:
        cache = settings.use_cache

    try:
        session = BuildSession(settings=settings, registry_override=cork_build_registry)
        options = BuildOptions(
            project=project,
            version=version,
            production=production,
            push=push,
            use_remote=split_list(use_remote),
            use_registry=split_list(use_registry),
            dry_run=dry_run,
            tag_selection=tag_selection,
            override_tag=override_tag,
            filter=split_list(image_filter),
            depth=build_depth,
            cache=cache,
            cache_from=cache_from,
            platform=platform,
            local_dev_registry=(
                local_dev_registry
                or settings.local_dev_registry
                or session.kube_config.build.local_dev_registry
                or LOCAL_DEV_REGISTRY
            ),
            mode=batch_mode,
            jobs=jobs or settings.max_concurrent_builds,
            strict_versions=strict_versions,
        )
        plan = plan_build(session, options)
        _print_plan(plan)

        if dry_run:
            for spec in plan.images:
                console.print()
                console.print(
                    f"Building image {spec.name} for {spec.project.name} "
                    f"from: {spec.source_dockerfile}"
                )
                console.print(spec.display, markup=False, highlight=False)
            console.print()
            console.print("[bold]*** Dry Run ***[/bold]")
            return

        report = run_build_plan(session, plan, options)
    except BuildFailedError as e:
        _print_report(e.report)
        err_console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None
    except CorkKubeError as e:
        err_console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None

    console.print()
    console.print("[bold]*** Build Complete ***[/bold]")
    _print_report(report)


@build_app.command("gcb")
def build_gcb(
    project: Annotated[str, typer.Option("--project", "-p", help="Project name")],
    version: Annotated[str, typer.Option("--version", "-v", help="Version to build")],
    cork_build_registry: Annotated[
        str | None,
        typer.Option("--cork-build-registry", help="Override the build registry location"),
    ] = None,
    gcb_project: Annotated[
        str | None,
        typer.Option("--gcb-project", help="Google Cloud project to submit the build to"),
    ] = None,
    cache: Annotated[
        bool,
        typer.Option("--cache/--no-cache", help="Use the docker layer cache"),
    ] = True,
    high_cpu: Annotated[
        bool,
        typer.Option("--high-cpu", help="Use the high cpu machine type"),
    ] = False,
    depth: Annotated[
        str,
        typer.Option("--depth", help="Dependency levels to build, or ALL"),
    ] = "1",
    prepend_build_steps: Annotated[
        Path | None,
        typer.Option("--prepend-build-steps", help="YAML file with steps to run first"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-d", help="Just print the gcloud command"),
    ] = False,
) -> None:
    """Submit a project build to Google Cloud Build."""
    from cork_kube.builds.gcb import CloudBuildRequest, submit_cloud_build
    from cork_kube.builds.order import parse_depth
    from cork_kube.builds.service import BuildSession
    from cork_kube.errors import CorkKubeError

    try:
        build_depth = parse_depth(depth)
    except ValueError as e:
        console.print(f"[red]Invalid option: {e}[/red]")
        raise typer.Exit(code=1) from None

    try:
        session = BuildSession(registry_override=cork_build_registry)
        submission = submit_cloud_build(
            session,
            CloudBuildRequest(
                project=project,
                version=version,
                gcb_project=gcb_project,
                cache=cache,
                high_cpu=high_cpu,
                depth=build_depth,
                prepend_build_steps=prepend_build_steps,
                dry_run=dry_run,
            ),
        )
    except CorkKubeError as e:
        err_console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None

    if dry_run:
        import shlex

        console.print(shlex.join(submission.command), markup=False, highlight=False)
        console.print()
        console.print("[bold]*** Build File ***[/bold]")
        console.print()
        console.print(submission.build_file_content or "", markup=False, highlight=False)


@build_app.command("list")
def build_list(
    project: Annotated[
        str | None,
        typer.Option("--project", "-p", help="Filter to a project name"),
    ] = None,
    names: Annotated[
        bool,
        typer.Option("--names", "-n", help="Just list project names"),
    ] = False,
    cork_build_registry: Annotated[
        str | None,
        typer.Option("--cork-build-registry", help="Override the build registry location"),
    ] = None,
) -> None:
    """List registry projects and their versions."""
    from cork_kube.builds.service import BuildSession
    from cork_kube.errors import CorkKubeError

    try:
        session = BuildSession(registry_override=cork_build_registry)
        descriptors = session.registry.load()
    except CorkKubeError as e:
        err_console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None

    listing: dict[str, dict[str, object]] = {}
    for name, descriptor in descriptors.items():
        if project and name != project:
            continue
        listing[name] = {
            "url": descriptor.repository,
            "versions": [] if names else list(descriptor.builds),
        }

    output: object = list(listing) if names else listing
    console.print(
        yaml.safe_dump(output, default_flow_style=False, sort_keys=False),
        markup=False,
        highlight=False,
    )


@build_app.command("register-local-repo")
def register_local_repo(
    directory: Annotated[Path, typer.Argument(help="Repository directory")],
) -> None:
    """Register a local working copy to use instead of a clone."""
    from cork_kube.config import LocalRepo, load_kube_config
    from cork_kube.errors import CorkKubeError
    from cork_kube.vcs.git import git_info

    directory = directory.expanduser().resolve()
    if not directory.is_dir():
        console.print(f"[red]Directory not found: {directory}[/red]")
        raise typer.Exit(code=1)

    try:
        kube_config = load_kube_config()
        info = git_info(directory)
    except CorkKubeError as e:
        err_console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None

    if not info.name:
        console.print(
            f"[red]Could not find repository name for {directory}. "
            f"Is it a git repository?[/red]"
        )
        raise typer.Exit(code=1)

    kube_config.global_build.local_repos[info.name] = LocalRepo(
        dir=str(directory), url=info.http_remote
    )
    kube_config.save_global()
    console.print(
        f"[green]Registered repository {info.name} ({info.http_remote}) "
        f"to {directory}[/green]"
    )


@build_app.command("show-local-repos")
def show_local_repos() -> None:
    """Show registered local repositories."""
    from cork_kube.config import load_kube_config
    from cork_kube.errors import CorkKubeError

    try:
        kube_config = load_kube_config()
    except CorkKubeError as e:
        err_console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None

    repos = {
        name: repo.model_dump() for name, repo in kube_config.build.local_repos.items()
    }
    console.print(
        yaml.safe_dump(repos, default_flow_style=False, sort_keys=False),
        markup=False,
        highlight=False,
    )


@build_app.command("set-registry-location")
def set_registry_location(
    location: Annotated[
        str, typer.Argument(help="Local directory or git URL of the build registry")
    ],
) -> None:
    """Set the location of the build registry."""
    from cork_kube.config import load_kube_config
    from cork_kube.registry.loader import is_git_url

    kube_config = load_kube_config()

    if is_git_url(location):
        console.print(f"Setting registry url: {location}")
        kube_config.global_build.registry_url = location
        kube_config.save_global()
        return

    directory = Path(location).expanduser().resolve()
    if not directory.is_dir():
        console.print(f"[red]Directory not found: {directory}[/red]")
        raise typer.Exit(code=1)

    console.print(f"Setting local registry dir: {directory}")
    kube_config.global_build.dependencies_dir = str(directory)
    kube_config.save_global()


@build_app.command("reset-registry-location")
def reset_registry_location() -> None:
    """Use the remote location of the build registry."""
    from cork_kube.config import load_kube_config

    kube_config = load_kube_config()
    kube_config.global_build.dependencies_dir = None
    kube_config.save_global()
    console.print("Registry location reset")


@build_app.command("set-gcb-project")
def set_gcb_project(
    project: Annotated[str, typer.Argument(help="Google Cloud project for builds")],
) -> None:
    """Set the Google Cloud Build project."""
    from cork_kube.config import load_kube_config

    kube_config = load_kube_config()
    kube_config.global_build.gcb_project = project
    kube_config.save_global()
    console.print(f"Google Cloud Build project set to {project}")


if __name__ == "__main__":
    app()
