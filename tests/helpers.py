"""Test helpers for building registry descriptors and git metadata."""

import json
from pathlib import Path

from cork_kube.vcs.git import GitInfo


def write_descriptor(registry_dir: Path, name: str, data: dict) -> Path:
    """Write ``repositories/<name>.json`` into a registry directory."""
    repos_dir = registry_dir / "repositories"
    repos_dir.mkdir(parents=True, exist_ok=True)
    path = repos_dir / f"{name}.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def make_git_info(
    name: str,
    tag: str = "",
    branch: str = "main",
    commit: str = "abc1234",
) -> GitInfo:
    """Return git metadata for a repository under github.com/ucd-library."""
    url = f"https://github.com/ucd-library/{name}"
    return GitInfo(
        remote=f"{url}.git",
        http_remote=url,
        commit=commit,
        tag=tag,
        branch=branch,
        name=name,
        date="2024-05-01T10:00:00+00:00",
    )
