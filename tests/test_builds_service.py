"""Tests for builds/service.py module.

git and docker are never executed: pull_repository, git_info and
run_command are patched where the service looks them up.
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from cork_kube.builds.commands import ImageBuildSpec
from cork_kube.builds.graph import BuildGraph
from cork_kube.builds.options import BuildOptions
from cork_kube.builds.order import BuildItem
from cork_kube.builds.service import (
    BuildFailedError,
    BuildPlan,
    BuildSession,
    _image_prerequisites,
    format_duration,
    plan_build,
    run_build_plan,
)
from cork_kube.config import KubeConfig, Settings
from cork_kube.errors import CommandError, GraphError, ImageBuildError, ManifestError
from cork_kube.runner import CommandResult
from cork_kube.types import BatchMode, BuildStatus

from helpers import make_git_info

APP_URL = "https://github.com/ucd-library/app"
LIB_URL = "https://github.com/ucd-library/lib"


def _write_repo(directory: Path, manifest: dict) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / ".cork-build").write_text(json.dumps(manifest))
    (directory / "Dockerfile").write_text("FROM alpine\n")


APP_MANIFEST = {
    "repositories": {"lib": LIB_URL},
    "images": {"app": {"options": {"build-arg": ["BASE=${lib.lib}"]}}},
}
LIB_MANIFEST = {"images": {"lib": {}}}


def _fake_clone(directory: Path, url: str, version: str) -> None:
    _write_repo(directory, APP_MANIFEST if url == APP_URL else LIB_MANIFEST)


def _fake_git_info(directory, version=None):
    name = Path(directory).name.split("-")[0]
    return make_git_info(name, tag=version or "", branch="")


class DockerRecorder:
    """Fake run_command recording builds and the files present during each."""

    def __init__(self, fail_on: int | None = None) -> None:
        self.fail_on = fail_on
        self.builds: list[list[str]] = []
        self.present: list[bool] = []

    def __call__(self, argv, realtime=False, **kwargs) -> CommandResult:
        self.builds.append(list(argv))
        dockerfile = Path(argv[argv.index("--file") + 1])
        context = Path(argv[-1])
        info_files = list(context.glob("*.cork-build.json"))
        self.present.append(dockerfile.is_file() and len(info_files) == 1)
        if self.fail_on is not None and len(self.builds) == self.fail_on:
            raise CommandError("docker build failed", exit_code=1)
        return CommandResult(command=" ".join(argv), exit_code=0)


@pytest.fixture
def workspace(tmp_path: Path, registry_dir: Path):
    """Session with a local lib checkout and the app repository remote."""
    lib_dir = tmp_path / "src" / "lib"
    _write_repo(lib_dir, LIB_MANIFEST)

    global_file = tmp_path / "home" / ".cork-kube-config"
    global_file.parent.mkdir()
    global_file.write_text(
        json.dumps({"build": {"localRepos": {"lib": {"dir": str(lib_dir), "url": LIB_URL}}}})
    )
    kube_config = KubeConfig(local_file=tmp_path / "cwd", global_file=global_file)
    settings = Settings(root_dir=tmp_path / "root", registry=str(registry_dir))
    session = BuildSession(settings=settings, kube_config=kube_config)
    return session, lib_dir


class TestFormatDuration:
    """Tests for format_duration function."""

    def test_seconds(self) -> None:
        """Durations up to a minute should be whole seconds, rounded up."""
        assert format_duration(0.2) == "1s"
        assert format_duration(42.0) == "42s"
        assert format_duration(60.0) == "60s"

    def test_minutes(self) -> None:
        """Longer durations should be minutes with two decimals."""
        assert format_duration(90.0) == "1.50m"


class TestBuildSession:
    """Tests for BuildSession class."""

    def test_clone_once_per_session(self, workspace) -> None:
        """The same url and version should be synced once."""
        session, _ = workspace
        with patch("cork_kube.builds.service.pull_repository") as mock_pull:
            first = session.clone(APP_URL, "v1.0.0")
            second = session.clone(APP_URL + ".git", "v1.0.0")
            session.clone(APP_URL, "main")

        assert first == second == session.repos_dir / "app-v1.0.0"
        assert mock_pull.call_count == 2

    def test_local_repos_from_config(self, workspace) -> None:
        """Registered local repositories should come from the config files."""
        session, lib_dir = workspace
        assert session.local_repos["lib"].dir == str(lib_dir)


class TestPlanBuild:
    """Tests for plan_build function."""

    def test_plan_with_local_dependency(self, workspace) -> None:
        """Only the remote project should be cloned; order is [lib, app]."""
        session, lib_dir = workspace
        options = BuildOptions(project="app", version="v1.0.0", depth="ALL")

        with (
            patch(
                "cork_kube.builds.service.pull_repository", side_effect=_fake_clone
            ) as mock_pull,
            patch("cork_kube.builds.service.git_info", side_effect=_fake_git_info),
        ):
            plan = plan_build(session, options)

        assert [item.name for item in plan.order] == ["lib", "app"]
        mock_pull.assert_called_once()
        assert mock_pull.call_args.args[1] == APP_URL
        assert plan.order[0].directory == lib_dir
        assert [spec.tag for spec in plan.images] == [
            "localhost/local-dev/lib:v2.0.0",
            "localhost/local-dev/app:v1.0.0",
        ]
        app_spec = plan.images[1]
        assert app_spec.options == {"build-arg": ["BASE=localhost/local-dev/lib:v2.0.0"]}
        assert "BASE=localhost/local-dev/lib:v2.0.0" in app_spec.argv

    def test_depth_one_still_resolves_dependency_images(self, workspace) -> None:
        """Depth 1 should build only the root but render dependency images."""
        session, _ = workspace
        options = BuildOptions(project="app", version="v1.0.0")

        with (
            patch("cork_kube.builds.service.pull_repository", side_effect=_fake_clone),
            patch("cork_kube.builds.service.git_info", side_effect=_fake_git_info),
        ):
            plan = plan_build(session, options)

        assert [item.name for item in plan.order] == ["app"]
        assert [spec.name for spec in plan.images] == ["app"]
        assert plan.images[0].options["build-arg"] == [
            "BASE=localhost/local-dev/lib:v2.0.0"
        ]

    def test_filter(self, workspace) -> None:
        """The image filter should limit the built images."""
        session, _ = workspace
        options = BuildOptions(project="app", version="v1.0.0", depth="ALL", filter=["app"])

        with (
            patch("cork_kube.builds.service.pull_repository", side_effect=_fake_clone),
            patch("cork_kube.builds.service.git_info", side_effect=_fake_git_info),
        ):
            plan = plan_build(session, options)

        assert [spec.name for spec in plan.images] == ["app"]

    def test_unknown_version(self, workspace) -> None:
        """A version with no build entry should fail before cloning."""
        session, _ = workspace
        with patch("cork_kube.builds.service.pull_repository") as mock_pull:
            with pytest.raises(GraphError):
                plan_build(session, BuildOptions(project="lib", version="v9"))

        mock_pull.assert_not_called()


class TestRunBuildPlan:
    """Tests for run_build_plan function."""

    def _plan(self, session, options):
        with (
            patch("cork_kube.builds.service.pull_repository", side_effect=_fake_clone),
            patch("cork_kube.builds.service.git_info", side_effect=_fake_git_info),
        ):
            return plan_build(session, options)

    def test_end_to_end(self, workspace) -> None:
        """Provenance files should exist during each build and be removed after."""
        session, lib_dir = workspace
        options = BuildOptions(project="app", version="v1.0.0", depth="ALL")
        plan = self._plan(session, options)
        docker = DockerRecorder()

        with patch("cork_kube.builds.service.run_command", side_effect=docker):
            report = run_build_plan(session, plan, options)

        assert report.succeeded == 2
        assert docker.present == [True, True]
        assert docker.builds[0][-1] == str(lib_dir.resolve())
        app_dir = plan.order[1].directory
        assert not list(app_dir.glob("*.cork-build.json"))
        assert not (app_dir / "corkbuild.Dockerfile").exists()
        assert not list(lib_dir.glob("*.cork-build.json"))

    def test_dry_run_builds_nothing(self, workspace) -> None:
        """A dry run should report every image skipped without running docker."""
        session, _ = workspace
        options = BuildOptions(project="app", version="v1.0.0", dry_run=True)
        plan = self._plan(session, options)

        with patch("cork_kube.builds.service.run_command") as mock_run:
            report = run_build_plan(session, plan, options)

        mock_run.assert_not_called()
        assert report.dry_run is True
        assert [r.status for r in report.results] == [BuildStatus.SKIPPED]

    def test_second_of_three_fails(self, workspace) -> None:
        """A failing image should stop the build and leave no artifacts."""
        session, _ = workspace
        manifest = {"images": {"one": {}, "two": {}, "three": {}}}
        options = BuildOptions(project="tool", version="main")

        def clone(directory, url, version):
            _write_repo(directory, manifest)

        with (
            patch("cork_kube.builds.service.pull_repository", side_effect=clone),
            patch("cork_kube.builds.service.git_info", side_effect=_fake_git_info),
        ):
            plan = plan_build(session, options)

        docker = DockerRecorder(fail_on=2)
        with patch("cork_kube.builds.service.run_command", side_effect=docker):
            with pytest.raises(BuildFailedError) as exc_info:
                run_build_plan(session, plan, options)

        report = exc_info.value.report
        assert [r.status for r in report.results] == [
            BuildStatus.SUCCEEDED,
            BuildStatus.FAILED,
            BuildStatus.SKIPPED,
        ]
        assert len(docker.builds) == 2
        assert "Error building image two for tool" in report.results[1].error_message
        assert "tool:two" in exc_info.value.message

        directory = plan.order[0].directory
        assert not list(directory.glob("*.cork-build.json"))
        assert not (directory / "corkbuild.Dockerfile").exists()


class TestImagePrerequisites:
    """Tests for _image_prerequisites function."""

    def test_images_wait_for_dependencies_and_siblings(self, workspace) -> None:
        """Each image should wait for its previous sibling and dependency images."""
        session, _ = workspace
        options = BuildOptions(project="app", version="v1.0.0", depth="ALL")
        with (
            patch("cork_kube.builds.service.pull_repository", side_effect=_fake_clone),
            patch("cork_kube.builds.service.git_info", side_effect=_fake_git_info),
        ):
            plan = plan_build(session, options)

        lib_spec, app_spec = plan.images
        prerequisites = _image_prerequisites(plan.images, plan.order)
        assert prerequisites[lib_spec] == []
        assert prerequisites[app_spec] == [lib_spec]

    def test_waits_through_project_without_images(self, tmp_path: Path) -> None:
        """A -> B -> C with B filtered out should still make A wait for C."""
        plan = _chain_plan(tmp_path)
        c_spec, a_spec = plan.images
        prerequisites = _image_prerequisites(plan.images, plan.order)
        assert prerequisites[c_spec] == []
        assert prerequisites[a_spec] == [c_spec]


def _chain_plan(tmp_path: Path) -> BuildPlan:
    """Plan for A -> B -> C where only A and C have images to build."""
    c = BuildItem(name="c")
    b = BuildItem(name="b", dependencies={"c": BuildItem(name="c")})
    a = BuildItem(name="a", dependencies={"b": BuildItem(name="b")})

    def spec(item: BuildItem) -> ImageBuildSpec:
        return ImageBuildSpec(
            project=item,
            name=item.name,
            context_path=tmp_path,
            source_dockerfile=tmp_path / "Dockerfile",
            dockerfile=tmp_path / "Dockerfile",
            tag=f"localhost/local-dev/{item.name}:main",
        )

    return BuildPlan(
        graph=BuildGraph(root="a"), order=[c, b, a], images=[spec(c), spec(a)]
    )


class TestBestEffortChain:
    """Tests for best-effort runs across projects with no planned images."""

    def test_failed_transitive_dependency_skips_dependent(
        self, workspace, tmp_path: Path
    ) -> None:
        """A failure in C should skip A even when B has no images."""
        session, _ = workspace
        plan = _chain_plan(tmp_path)
        options = BuildOptions(
            project="a", version="main", mode=BatchMode.BEST_EFFORT, jobs=2
        )
        built: list[str] = []

        def build(spec: ImageBuildSpec) -> None:
            built.append(spec.name)
            if spec.name == "c":
                raise ImageBuildError("c", "c", "docker build failed", exit_code=1)

        with patch("cork_kube.builds.service.build_image", side_effect=build):
            with pytest.raises(BuildFailedError) as exc_info:
                run_build_plan(session, plan, options)

        assert built == ["c"]
        assert [r.status for r in exc_info.value.report.results] == [
            BuildStatus.FAILED,
            BuildStatus.SKIPPED,
        ]


class TestPlanBuildMissingManifest:
    """Tests for plan_build when a manifest was never loaded."""

    def test_missing_build_config_raises(self, workspace) -> None:
        """An item left without a build config should raise ManifestError."""
        session, _ = workspace
        options = BuildOptions(project="tool", version="main")

        with (
            patch("cork_kube.builds.service.pull_repository", side_effect=_fake_clone),
            patch("cork_kube.builds.service.git_info", side_effect=_fake_git_info),
            patch("cork_kube.builds.service.load_build_manifest"),
            patch("cork_kube.builds.service.render_manifest"),
        ):
            with pytest.raises(ManifestError, match="Build script not loaded for tool"):
                plan_build(session, options)
