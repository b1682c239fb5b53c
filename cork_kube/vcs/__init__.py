"""Version control helpers (git metadata and clone management)."""

from cork_kube.vcs.git import GitInfo, git_info, normalize_repo_url, pull_repository

__all__ = ["GitInfo", "git_info", "normalize_repo_url", "pull_repository"]
