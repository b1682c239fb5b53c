"""Error definitions for cork_kube.

Every error raised by the build engine derives from CorkKubeError and
carries a stable code for programmatic handling. Only the CLI catches
these; library code lets them propagate.
"""

# Error code constants
CONFIG_ERROR = "config_error"
REGISTRY_ERROR = "registry_error"
GRAPH_ERROR = "graph_error"
MANIFEST_ERROR = "manifest_error"
TEMPLATE_ERROR = "template_error"
TAG_SELECTION_ERROR = "tag_selection_error"
GIT_ERROR = "git_error"
COMMAND_ERROR = "command_error"
BUILD_ERROR = "build_failed"


class CorkKubeError(Exception):
    """Base error for cork_kube operations."""

    def __init__(self, message: str, code: str = "cork_kube_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigError(CorkKubeError):
    """Raised when a .cork-kube-config file cannot be read or is invalid."""

    def __init__(self, message: str, code: str = CONFIG_ERROR) -> None:
        super().__init__(message, code)


class RegistryError(CorkKubeError):
    """Raised when the repository registry cannot be located or parsed."""

    def __init__(self, message: str, code: str = REGISTRY_ERROR) -> None:
        super().__init__(message, code)


class GraphError(CorkKubeError):
    """Raised when a build graph cannot be resolved."""

    def __init__(self, message: str, code: str = GRAPH_ERROR) -> None:
        super().__init__(message, code)


class ManifestError(CorkKubeError):
    """Raised when a .cork-build manifest is missing, invalid or inconsistent."""

    def __init__(self, message: str, code: str = MANIFEST_ERROR) -> None:
        super().__init__(message, code)


class TemplateError(CorkKubeError):
    """Raised when a template references an undefined variable."""

    def __init__(self, variable: str, code: str = TEMPLATE_ERROR) -> None:
        super().__init__(f"Variable {variable} not found", code)
        self.variable = variable


class TagSelectionError(CorkKubeError):
    """Raised when no tag can be selected for a project."""

    def __init__(self, message: str, code: str = TAG_SELECTION_ERROR) -> None:
        super().__init__(message, code)


class CommandError(CorkKubeError):
    """Raised when an external command fails or cannot be started."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        stderr: str = "",
        code: str = COMMAND_ERROR,
    ) -> None:
        super().__init__(message, code)
        self.exit_code = exit_code
        self.stderr = stderr


class GitError(CommandError):
    """Raised when a git operation fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        stderr: str = "",
        code: str = GIT_ERROR,
    ) -> None:
        super().__init__(message, exit_code=exit_code, stderr=stderr, code=code)


class ImageBuildError(CorkKubeError):
    """Raised when the image builder exits non-zero for one image."""

    def __init__(
        self,
        project: str,
        image: str,
        message: str,
        exit_code: int | None = None,
        code: str = BUILD_ERROR,
    ) -> None:
        super().__init__(f"Error building image {image} for {project}: {message}", code)
        self.project = project
        self.image = image
        self.exit_code = exit_code


__all__ = [
    "BUILD_ERROR",
    "COMMAND_ERROR",
    "CONFIG_ERROR",
    "GIT_ERROR",
    "GRAPH_ERROR",
    "MANIFEST_ERROR",
    "REGISTRY_ERROR",
    "TAG_SELECTION_ERROR",
    "TEMPLATE_ERROR",
    "CommandError",
    "ConfigError",
    "CorkKubeError",
    "GitError",
    "GraphError",
    "ImageBuildError",
    "ManifestError",
    "RegistryError",
    "TagSelectionError",
    "TemplateError",
]
