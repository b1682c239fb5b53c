"""Repository registry module.

This module handles:
- Locating the registry (local directory or cloned git repository)
- Loading and validating per-repository descriptors
"""

from cork_kube.registry.loader import RegistryLoader
from cork_kube.registry.schema import RepositoryDescriptor, SecretRequirement

__all__ = ["RegistryLoader", "RepositoryDescriptor", "SecretRequirement"]
