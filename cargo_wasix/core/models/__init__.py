"""
Domain models — Pydantic types for cargo-wasix.

All models are re-exported here for convenient access:

    from cargo_wasix.core.models import ToolSpec, CachedTool, BuildArtifact
"""

from cargo_wasix.core.models.artifact import BuildArtifact, triple_for
from cargo_wasix.core.models.compat import (
    Dependency,
    DependencyGraph,
    Diagnostic,
    IncompatibleCrateEntry,
    Replacement,
)
from cargo_wasix.core.models.pipeline import PipelineContext, PipelineFlags
from cargo_wasix.core.models.process import ProcessRequest, ProcessResult
from cargo_wasix.core.models.tool import CachedTool, ToolSpec

__all__ = [
    # artifact.py
    "BuildArtifact",
    # tool.py
    "CachedTool",
    # compat.py
    "Dependency",
    "DependencyGraph",
    "Diagnostic",
    "IncompatibleCrateEntry",
    # pipeline.py
    "PipelineContext",
    "PipelineFlags",
    # process.py
    "ProcessRequest",
    "ProcessResult",
    "Replacement",
    "ToolSpec",
    "triple_for",
]
