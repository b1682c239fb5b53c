"""cork-kube - Kubernetes environment and multi-repository image build tooling.

This package provides the ``build`` command family: dependency graph
resolution across a registry of repositories, and ``docker buildx`` image
builds driven by per-repository ``.cork-build`` manifests.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
