"""
Compatibility models — known-incompatible crates and what was found.

The dataset is append-friendly: unknown fields are ignored and every
field beyond name/range/severity is optional, so a dataset written for
a newer release still loads here.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["warn", "block"]


class Replacement(BaseModel):
    """A git patch that makes an incompatible crate work on WASIX."""

    model_config = ConfigDict(extra="ignore")

    version: str = "*"          # crate versions this replacement applies to
    repo: str
    branch: str | None = None


class IncompatibleCrateEntry(BaseModel):
    """One row of the incompatible-crate dataset."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str
    affected_version_range: str = "*"
    compatible_versions: str | None = None   # older datasets: versions known to work
    severity: Severity = "block"
    reason: str = ""
    alternative: str | None = None
    replacements: list[Replacement] = Field(default_factory=list)


class Dependency(BaseModel):
    """A resolved package in the project's dependency graph."""

    name: str
    version: str
    source: str | None = None   # e.g. registry+https://..., git+https://...


class DependencyGraph(BaseModel):
    """Every package reachable from the root through non-build edges."""

    root: str = ""
    dependencies: list[Dependency] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.dependencies)


class Diagnostic(BaseModel):
    """A match between a dependency and a dataset entry."""

    severity: Severity
    crate: str
    version: str
    range: str
    reason: str = ""
    alternative: str | None = None
    replacements: list[Replacement] = Field(default_factory=list)

    @property
    def blocking(self) -> bool:
        return self.severity == "block"

    def summary(self) -> str:
        text = f"{self.crate} v{self.version} (affected: {self.range})"
        if self.reason:
            text += f": {self.reason}"
        if self.alternative:
            text += f"; consider {self.alternative}"
        return text
