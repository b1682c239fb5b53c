"""Git metadata resolution and repository sync.

This module handles:
- Reading provenance metadata (remote, commit, tag, branch, date) from a
  working copy
- Converging a local clone onto a requested branch or tag
- Normalizing SSH and HTTPS forms of repository URLs

Every call shells out to git; nothing is cached.
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from cork_kube.errors import CommandError, GitError
from cork_kube.runner import CommandResult, run_command

logger = logging.getLogger(__name__)

SSH_URL_PATTERN = re.compile(r"^git@([^:]+):(.+)$")


def normalize_repo_url(url: str) -> str:
    """Normalize a repository URL to its HTTPS form without ``.git``.

    Args:
        url: SSH (git@host:org/repo.git) or HTTPS repository URL.

    Returns:
        URL of the form https://host/org/repo.
    """
    url = url.strip()
    match = SSH_URL_PATTERN.match(url)
    if match:
        url = f"https://{match.group(1)}/{match.group(2)}"
    url = url.rstrip("/")
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return url


def repo_name_from_url(url: str) -> str:
    """Return the repository short name (URL basename without .git)."""
    return normalize_repo_url(url).split("/")[-1]


def same_repo(url_a: str | None, url_b: str | None) -> bool:
    """Check whether two URLs point to the same repository."""
    if not url_a or not url_b:
        return False
    return normalize_repo_url(url_a) == normalize_repo_url(url_b)


@dataclass(frozen=True)
class GitInfo:
    """Snapshot of a working copy's provenance.

    Attributes:
        remote: First fetch URL reported by git.
        http_remote: HTTPS form of the remote without .git.
        commit: Short commit hash of HEAD.
        tag: Selected tag containing HEAD ("" when none).
        branch: Current branch ("" when HEAD is detached).
        name: Repository short name.
        date: ISO8601 committer date of HEAD.
    """

    remote: str
    http_remote: str
    commit: str
    tag: str
    branch: str
    name: str
    date: str

    def to_provenance(self) -> dict[str, Any]:
        """Return the camelCase mapping written into build info files."""
        data = asdict(self)
        data["httpRemote"] = data.pop("http_remote")
        return data


def _git(
    directory: Path | str,
    *args: str,
    realtime: bool = False,
    check: bool = True,
) -> CommandResult:
    """Run ``git -C <directory> <args>``, raising GitError on failure."""
    try:
        return run_command(
            ["git", "-C", str(directory), *args], realtime=realtime, check=check
        )
    except CommandError as e:
        raise GitError(e.message, exit_code=e.exit_code, stderr=e.stderr) from e


def get_remote_url(directory: Path | str) -> str:
    """Return the first remote URL of a working copy.

    Raises:
        GitError: If git fails or the repository has no remote.
    """
    result = _git(directory, "remote", "-v")
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 2:
            return parts[1]
    raise GitError(f"No git remote configured in {directory}")


def select_tag(tags: list[str], version: str | None = None) -> str:
    """Pick the tag to report for HEAD.

    Args:
        tags: Tags containing HEAD, in the order git listed them.
        version: Requested version, preferred when present.

    Returns:
        The requested version if listed, else the first listed tag, else "".
    """
    if not tags:
        return ""
    if version and version in tags:
        return version
    return tags[0]


def git_info(directory: Path | str, version: str | None = None) -> GitInfo:
    """Read provenance metadata from a working copy.

    Tags are listed with ``--sort=-v:refname`` so the first listed tag, used
    when the requested version is not among them, is the highest version.

    Args:
        directory: Working copy directory.
        version: Requested version; wins the tag selection when it tags HEAD.

    Returns:
        GitInfo snapshot.

    Raises:
        GitError: If a git command fails.
    """
    remote = get_remote_url(directory)
    http_remote = normalize_repo_url(remote)

    commit = _git(directory, "log", "-1", "--pretty=%h").stdout.strip()
    date = _git(directory, "log", "-1", "--pretty=%cI").stdout.strip()

    tag_output = _git(
        directory, "tag", "--contains", "HEAD", "--sort=-v:refname"
    ).stdout
    tags = [t.strip() for t in tag_output.splitlines() if t.strip()]
    tag = select_tag(tags, version)

    branch = _git(directory, "rev-parse", "--abbrev-ref", "HEAD").stdout.strip()
    if branch == "HEAD":
        branch = ""

    return GitInfo(
        remote=remote,
        http_remote=http_remote,
        commit=commit,
        tag=tag,
        branch=branch,
        name=http_remote.split("/")[-1],
        date=date,
    )


def clone_repository(directory: Path, url: str, version: str) -> None:
    """Shallow-clone a repository at a branch or tag."""
    logger.info("Cloning %s (%s) to %s", url, version, directory)
    directory.parent.mkdir(parents=True, exist_ok=True)
    try:
        run_command(
            [
                "git",
                "-c",
                "advice.detachedHead=false",
                "clone",
                url,
                "--branch",
                version,
                "--depth",
                "1",
                str(directory),
            ],
            realtime=True,
        )
    except CommandError as e:
        raise GitError(e.message, exit_code=e.exit_code, stderr=e.stderr) from e


def pull_repository(directory: Path | str, url: str, version: str) -> None:
    """Make the clone at ``directory`` reflect ``version`` of ``url``.

    A missing directory, or one whose remote is another repository, is
    replaced by a fresh shallow clone. An existing clone is hard reset when
    dirty, checked out when on another ref, and pulled when on a branch.
    The sequence is not transactional: a failure leaves the clone in an
    intermediate state and is not retried.

    Args:
        directory: Clone directory.
        url: Repository URL.
        version: Branch or tag name.

    Raises:
        GitError: If a git command fails.
    """
    directory = Path(directory)

    if directory.exists():
        try:
            current_remote = get_remote_url(directory)
        except GitError:
            current_remote = None
        if not same_repo(current_remote, url):
            logger.warning(
                "Directory %s does not hold %s, removing it before cloning",
                directory,
                url,
            )
            shutil.rmtree(directory)

    if not directory.exists():
        clone_repository(directory, url, version)
        return

    dirty = _git(directory, "diff", "--shortstat").stdout.strip() != ""
    info = git_info(directory, version)
    checkout_required = info.branch != version and info.tag != version

    if dirty or checkout_required:
        logger.info("Updating %s to %s", directory, version)

    if dirty:
        logger.warning(
            "Directory %s is dirty. Attempting hard reset before updating; "
            "local changes will be lost",
            directory,
        )
        _git(directory, "reset", "--hard", realtime=True)

    if checkout_required:
        logger.info("Checking out %s in %s", version, directory)
        _git(directory, "checkout", version, realtime=True)
        branch = _git(directory, "rev-parse", "--abbrev-ref", "HEAD").stdout.strip()
    else:
        branch = info.branch or "HEAD"

    if branch != "HEAD":
        _git(directory, "pull")
    else:
        logger.debug("%s is a detached checkout of %s, nothing to pull", directory, version)


__all__ = [
    "GitInfo",
    "clone_repository",
    "get_remote_url",
    "git_info",
    "normalize_repo_url",
    "pull_repository",
    "repo_name_from_url",
    "same_repo",
    "select_tag",
]
