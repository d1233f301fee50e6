"""
Post-processing pipeline — demangle, strip, bindgen, optimize.
"""

from cargo_wasix.core.services.pipeline.processor import PostProcessor, ToolProvider
from cargo_wasix.core.services.pipeline.stages import (
    BindgenStage,
    DemangleStage,
    OptimizeStage,
    Stage,
    StageEnv,
    StripStage,
    default_stages,
)

__all__ = [
    "BindgenStage",
    "DemangleStage",
    "OptimizeStage",
    "PostProcessor",
    "Stage",
    "StageEnv",
    "StripStage",
    "ToolProvider",
    "default_stages",
]
