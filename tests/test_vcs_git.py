"""Tests for vcs/git.py module.

git is never executed; run_command is patched with a fake that answers
by subcommand.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from cork_kube.errors import CommandError, GitError
from cork_kube.runner import CommandResult
from cork_kube.vcs.git import (
    GitInfo,
    git_info,
    normalize_repo_url,
    pull_repository,
    repo_name_from_url,
    same_repo,
    select_tag,
)

REMOTE = "git@github.com:ucd-library/app.git"


class FakeGit:
    """Answers ``git -C <dir> ...`` calls from a table of outputs."""

    def __init__(
        self,
        remote: str = REMOTE,
        tags: str = "",
        branch: str = "main",
        dirty: bool = False,
    ) -> None:
        self.remote = remote
        self.tags = tags
        self.branch = branch
        self.dirty = dirty
        self.calls: list[list[str]] = []

    def __call__(self, cmd, realtime=False, check=True, **kwargs) -> CommandResult:
        self.calls.append(list(cmd))
        args = cmd[3:] if cmd[:2] == ["git", "-C"] else cmd[1:]
        stdout = ""
        if args[:2] == ["remote", "-v"]:
            stdout = f"origin\t{self.remote} (fetch)\norigin\t{self.remote} (push)\n"
        elif args[:3] == ["log", "-1", "--pretty=%h"]:
            stdout = "abc1234\n"
        elif args[:3] == ["log", "-1", "--pretty=%cI"]:
            stdout = "2024-05-01T10:00:00+00:00\n"
        elif args[:2] == ["tag", "--contains"]:
            stdout = self.tags
        elif args[:2] == ["rev-parse", "--abbrev-ref"]:
            stdout = f"{self.branch}\n"
        elif args[:2] == ["diff", "--shortstat"]:
            stdout = " 1 file changed, 1 insertion(+)\n" if self.dirty else ""
        return CommandResult(command=" ".join(cmd), exit_code=0, stdout=stdout)

    def subcommands(self) -> list[str]:
        result = []
        for cmd in self.calls:
            args = cmd[3:] if cmd[:2] == ["git", "-C"] else cmd[1:]
            result.append(args[0] if args[0] != "-c" else args[2])
        return result


class TestNormalizeRepoUrl:
    """Tests for URL helpers."""

    def test_ssh_to_https(self) -> None:
        """SSH URLs should become HTTPS without .git."""
        assert (
            normalize_repo_url("git@github.com:ucd-library/app.git")
            == "https://github.com/ucd-library/app"
        )

    def test_https_strips_git_suffix_and_slash(self) -> None:
        """HTTPS URLs should lose a .git suffix and trailing slash."""
        assert (
            normalize_repo_url("https://github.com/ucd-library/app.git")
            == "https://github.com/ucd-library/app"
        )
        assert (
            normalize_repo_url("https://github.com/ucd-library/app/")
            == "https://github.com/ucd-library/app"
        )

    def test_repo_name(self) -> None:
        """Repository name should be the URL basename."""
        assert repo_name_from_url("git@github.com:ucd-library/app.git") == "app"

    def test_same_repo(self) -> None:
        """SSH and HTTPS forms of one repository should compare equal."""
        assert same_repo(REMOTE, "https://github.com/ucd-library/app")
        assert not same_repo(REMOTE, "https://github.com/ucd-library/lib")
        assert not same_repo(None, REMOTE)


class TestSelectTag:
    """Tests for select_tag function."""

    def test_requested_version_wins(self) -> None:
        """The requested version should be selected when it tags HEAD."""
        assert select_tag(["v1.0", "v2.0"], "v2.0") == "v2.0"

    def test_first_listed_otherwise(self) -> None:
        """The first listed tag should be selected otherwise."""
        assert select_tag(["v1.0", "v2.0"], "main") == "v1.0"
        assert select_tag(["v1.0", "v2.0"]) == "v1.0"

    def test_no_tags(self) -> None:
        """No tags should give an empty tag."""
        assert select_tag([], "v1.0") == ""


class TestGitInfo:
    """Tests for git_info function."""

    def test_reads_metadata(self, tmp_path: Path) -> None:
        """git_info should collect remote, commit, date, tag and branch."""
        fake = FakeGit(tags="v2.0\nv1.0\n")
        with patch("cork_kube.vcs.git.run_command", side_effect=fake):
            info = git_info(tmp_path, "v1.0")

        assert info == GitInfo(
            remote=REMOTE,
            http_remote="https://github.com/ucd-library/app",
            commit="abc1234",
            tag="v1.0",
            branch="main",
            name="app",
            date="2024-05-01T10:00:00+00:00",
        )
        tag_cmd = next(c for c in fake.calls if "tag" in c)
        assert "--sort=-v:refname" in tag_cmd

    def test_tag_requested_among_several(self, tmp_path: Path) -> None:
        """HEAD tagged v1.0 and v2.0 with v2.0 requested should give v2.0."""
        fake = FakeGit(tags="v1.0\nv2.0\n")
        with patch("cork_kube.vcs.git.run_command", side_effect=fake):
            assert git_info(tmp_path, "v2.0").tag == "v2.0"

    def test_tag_not_requested_takes_first(self, tmp_path: Path) -> None:
        """An unrequested version should fall back to the first listed tag."""
        fake = FakeGit(tags="v1.0\nv2.0\n")
        with patch("cork_kube.vcs.git.run_command", side_effect=fake):
            assert git_info(tmp_path, "v3.0").tag == "v1.0"

    def test_detached_head_has_no_branch(self, tmp_path: Path) -> None:
        """A detached HEAD should report an empty branch."""
        fake = FakeGit(tags="v1.0\n", branch="HEAD")
        with patch("cork_kube.vcs.git.run_command", side_effect=fake):
            info = git_info(tmp_path)

        assert info.branch == ""
        assert info.tag == "v1.0"

    def test_to_provenance_uses_camel_case(self, tmp_path: Path) -> None:
        """Provenance mapping should expose httpRemote."""
        fake = FakeGit()
        with patch("cork_kube.vcs.git.run_command", side_effect=fake):
            data = git_info(tmp_path).to_provenance()

        assert data["httpRemote"] == "https://github.com/ucd-library/app"
        assert "http_remote" not in data
        assert data["commit"] == "abc1234"

    def test_git_failure_raises_git_error(self, tmp_path: Path) -> None:
        """A failing git command should raise GitError."""
        with patch(
            "cork_kube.vcs.git.run_command",
            side_effect=CommandError("not a git repository", exit_code=128),
        ):
            with pytest.raises(GitError) as exc_info:
                git_info(tmp_path)

        assert exc_info.value.exit_code == 128
        assert exc_info.value.code == "git_error"

    def test_no_remote_raises(self, tmp_path: Path) -> None:
        """A repository without a remote should raise GitError."""
        fake = FakeGit()
        fake.remote = ""

        def no_remote(cmd, **kwargs):
            if "remote" in cmd:
                return CommandResult(command="git remote -v", exit_code=0, stdout="")
            return fake(cmd, **kwargs)

        with patch("cork_kube.vcs.git.run_command", side_effect=no_remote):
            with pytest.raises(GitError, match="No git remote"):
                git_info(tmp_path)


class TestPullRepository:
    """Tests for pull_repository function."""

    def test_missing_directory_is_cloned(self, tmp_path: Path) -> None:
        """A missing clone should be created with a shallow clone."""
        target = tmp_path / "repos" / "app-v1.0"
        fake = FakeGit()
        with patch("cork_kube.vcs.git.run_command", side_effect=fake):
            pull_repository(target, "https://github.com/ucd-library/app", "v1.0")

        assert len(fake.calls) == 1
        cmd = fake.calls[0]
        assert cmd[:4] == ["git", "-c", "advice.detachedHead=false", "clone"]
        assert "--branch" in cmd and "v1.0" in cmd
        assert cmd[-3:] == ["--depth", "1", str(target)]
        assert target.parent.is_dir()

    def test_up_to_date_branch_is_pulled(self, tmp_path: Path) -> None:
        """A clean clone already on the branch should only be pulled."""
        fake = FakeGit(branch="main")
        with patch("cork_kube.vcs.git.run_command", side_effect=fake):
            pull_repository(tmp_path, "https://github.com/ucd-library/app", "main")

        subcommands = fake.subcommands()
        assert "checkout" not in subcommands
        assert "reset" not in subcommands
        assert subcommands[-1] == "pull"

    def test_detached_tag_is_not_pulled(self, tmp_path: Path) -> None:
        """A clone detached at the requested tag should not be pulled."""
        fake = FakeGit(tags="v1.0\n", branch="HEAD")
        with patch("cork_kube.vcs.git.run_command", side_effect=fake):
            pull_repository(tmp_path, "https://github.com/ucd-library/app", "v1.0")

        subcommands = fake.subcommands()
        assert "checkout" not in subcommands
        assert "pull" not in subcommands

    def test_dirty_clone_is_reset_and_checked_out(self, tmp_path: Path) -> None:
        """A dirty clone on another ref should be reset then checked out."""
        fake = FakeGit(branch="main", dirty=True)
        with patch("cork_kube.vcs.git.run_command", side_effect=fake):
            pull_repository(tmp_path, "https://github.com/ucd-library/app", "dev")

        subcommands = fake.subcommands()
        assert subcommands.index("reset") < subcommands.index("checkout")
        checkout = next(c for c in fake.calls if "checkout" in c)
        assert checkout[-1] == "dev"

    def test_other_repository_is_replaced(self, tmp_path: Path) -> None:
        """A directory holding another repository should be re-cloned."""
        target = tmp_path / "app-main"
        target.mkdir()
        (target / "stale.txt").write_text("old")
        fake = FakeGit(remote="https://github.com/ucd-library/other")
        with patch("cork_kube.vcs.git.run_command", side_effect=fake):
            pull_repository(target, "https://github.com/ucd-library/app", "main")

        assert not (target / "stale.txt").exists()
        assert "clone" in fake.calls[-1]
