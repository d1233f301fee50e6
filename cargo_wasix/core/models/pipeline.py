"""
Pipeline context — per-run state handed through the post-processor.

Created by the build use case for each artifact, mutated by stages
(diagnostics, ``stages_run``), and discarded after the run.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class PipelineFlags(BaseModel):
    """Which stages are enabled for this run."""

    demangle: bool = True
    strip: bool = True          # still only applies to release profiles
    bindgen: bool = True        # still only applies when the build linked wasm-bindgen
    optimize: bool = True

    @classmethod
    def none(cls) -> PipelineFlags:
        """Flags for ``check``-style runs: zero stages."""
        return cls(demangle=False, strip=False, bindgen=False, optimize=False)


class PipelineContext(BaseModel):
    """Everything stages need besides the artifact itself."""

    triple: str
    profile: str = "debug"
    optimized: bool | None = None    # opt-level != 0, from the compiler's profile report
    debuginfo: bool | None = None    # debug info requested by the profile
    bit_width: int = 32
    flags: PipelineFlags = Field(default_factory=PipelineFlags)
    wasm_bindgen_version: str | None = None
    wasm_opt_flags: list[str] = Field(default_factory=list)    # extra user flags
    bindgen_out_dir: str | None = None

    diagnostics: list[str] = Field(default_factory=list)
    stages_run: list[str] = Field(default_factory=list)

    @property
    def is_release(self) -> bool:
        """Optimized build; falls back to the profile dir name when unreported."""
        if self.optimized is not None:
            return self.optimized
        return self.profile != "debug"

    @property
    def keeps_debuginfo(self) -> bool:
        if self.debuginfo is not None:
            return self.debuginfo
        return not self.is_release

    def note(self, message: str) -> None:
        """Record a diagnostic produced while processing."""
        self.diagnostics.append(message)
