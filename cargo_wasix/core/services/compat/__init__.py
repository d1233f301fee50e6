"""
Compatibility checking — known-incompatible crates vs. the dependency graph.
"""

from cargo_wasix.core.services.compat.checker import (
    CompatibilityChecker,
    blocking_message,
    raise_for_blocking,
)
from cargo_wasix.core.services.compat.dataset import DatasetLoader, parse_dataset
from cargo_wasix.core.services.compat.metadata import graph_from_metadata, read_dependency_graph

__all__ = [
    "CompatibilityChecker",
    "DatasetLoader",
    "blocking_message",
    "graph_from_metadata",
    "parse_dataset",
    "raise_for_blocking",
    "read_dependency_graph",
]
