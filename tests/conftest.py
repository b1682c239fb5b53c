"""Shared fixtures: an on-disk repository registry."""

from pathlib import Path

import pytest

from helpers import write_descriptor


@pytest.fixture
def registry_dir(tmp_path: Path) -> Path:
    """Registry with app -> lib (v2.0.0) and a standalone tool."""
    root = tmp_path / "registry"
    write_descriptor(
        root,
        "app",
        {
            "repository": "https://github.com/ucd-library/app",
            "registry": "us-docker.pkg.dev/ucdlib/pub",
            "dependencies": {"lib": "https://github.com/ucd-library/lib"},
            "builds": {"v1.0.0": {"lib": "v2.0.0"}, "*": {"lib": "main"}},
        },
    )
    write_descriptor(
        root,
        "lib",
        {
            "repository": "https://github.com/ucd-library/lib.git",
            "registry": "us-docker.pkg.dev/ucdlib/pub",
            "builds": {"v2.0.0": {}, "main": {}},
        },
    )
    write_descriptor(
        root,
        "tool",
        {"repository": "https://github.com/ucd-library/tool", "builds": {"*": {}}},
    )
    return root
