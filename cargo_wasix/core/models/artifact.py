"""
Build artifact model — a compiled module produced by the compiler.
"""

from __future__ import annotations

from pydantic import BaseModel


def triple_for(bit_width: int) -> str:
    """The WASIX target triple for a pointer width."""
    if bit_width not in (32, 64):
        raise ValueError(f"unsupported bit width: {bit_width}")
    return f"wasm{bit_width}-wasmer-wasi"


class BuildArtifact(BaseModel):
    """A ``.wasm`` module on disk.

    Read-only to the core except for post-processing stages, which
    rewrite ``path`` in place through atomic replaces.
    """

    path: str                 # absolute
    target: str               # artifact name (file stem)
    profile: str = "debug"    # directory name: debug, release, or a custom profile
    bit_width: int = 32
    test: bool = False        # lives under deps/ (test and bench harnesses)
    example: bool = False     # lives under examples/
    optimized: bool | None = None
    fresh: bool = False       # compiler reported it as up to date

    @property
    def triple(self) -> str:
        return triple_for(self.bit_width)

    @property
    def is_release(self) -> bool:
        if self.optimized is not None:
            return self.optimized
        return self.profile != "debug"
