"""
L1 Domain — Incompatible-crate matching (pure).

Compares a resolved dependency graph against the incompatible-crate
dataset.  ``warn`` matches are advisory; any ``block`` match means the
build must not start, and ``raise_for_blocking`` produces the message
telling the user how to patch their manifest.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from cargo_wasix.core.domain.semver import Version, VersionReq
from cargo_wasix.core.errors import IncompatibleCrateBlocking
from cargo_wasix.core.models.compat import (
    DependencyGraph,
    Diagnostic,
    IncompatibleCrateEntry,
    Replacement,
)

logger = logging.getLogger(__name__)

# Packages from these sources are already the WASIX-patched forks.
REPLACEMENT_SOURCE_PREFIX = "git+https://github.com/wasix-org"


def _req(text: str | None, entry: str) -> VersionReq | None:
    if text is None:
        return None
    try:
        return VersionReq.parse(text)
    except ValueError:
        logger.warning("Ignoring unparseable version range %r for %s", text, entry)
        return None


def _affected(entry: IncompatibleCrateEntry, version: Version) -> bool:
    affected = _req(entry.affected_version_range, entry.name)
    if affected is None or not affected.matches(version):
        return False
    compatible = _req(entry.compatible_versions, entry.name)
    return compatible is None or not compatible.matches(version)


class CompatibilityChecker:
    """Matches dependencies against known-incompatible crates."""

    def __init__(self, entries: Iterable[IncompatibleCrateEntry]):
        self._by_name: dict[str, list[IncompatibleCrateEntry]] = {}
        for entry in entries:
            self._by_name.setdefault(entry.name, []).append(entry)

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_name.values())

    def check(self, graph: DependencyGraph) -> list[Diagnostic]:
        """One diagnostic per (dependency, matching entry)."""
        diagnostics: list[Diagnostic] = []
        for dep in graph.dependencies:
            entries = self._by_name.get(dep.name)
            if not entries:
                continue
            if dep.source and dep.source.startswith(REPLACEMENT_SOURCE_PREFIX):
                logger.debug("%s already uses a WASIX replacement (%s)", dep.name, dep.source)
                continue
            try:
                version = Version.parse(dep.version)
            except ValueError:
                logger.warning("Cannot parse version %r of %s; not checking it", dep.version, dep.name)
                continue
            for entry in entries:
                if _affected(entry, version):
                    diagnostics.append(
                        Diagnostic(
                            severity=entry.severity,
                            crate=dep.name,
                            version=dep.version,
                            range=entry.affected_version_range,
                            reason=entry.reason,
                            alternative=entry.alternative,
                            replacements=entry.replacements,
                        )
                    )
        return diagnostics


# ── Reporting ───────────────────────────────────────────────────


def find_replacement(diag: Diagnostic) -> Replacement | None:
    """First replacement whose version range covers the found version."""
    version = Version.parse(diag.version)
    for replacement in diag.replacements:
        req = _req(replacement.version, diag.crate)
        if req is not None and req.matches(version):
            return replacement
    return None


def patch_line(crate: str, replacement: Replacement) -> str:
    line = f'{crate} = {{ git = "{replacement.repo}"'
    if replacement.branch:
        line += f', branch = "{replacement.branch}"'
    return line + " }"


def blocking_message(diagnostics: list[Diagnostic]) -> str:
    """Actionable explanation for a set of blocking diagnostics."""
    names = ", ".join(dict.fromkeys(d.crate for d in diagnostics))
    lines = [f"Found incompatible crates in dependencies (of dependencies): {names}", ""]
    for diag in diagnostics:
        lines.append(f"  * {diag.summary()}")

    patches: list[str] = []
    missing: list[Diagnostic] = []
    for diag in diagnostics:
        replacement = find_replacement(diag)
        if replacement is None:
            missing.append(diag)
        else:
            patches.append(patch_line(diag.crate, replacement))

    if patches:
        lines += ["", "To fix this add the following to 'Cargo.toml':", "[patch.crates-io]"]
        lines += list(dict.fromkeys(patches))
        lines += [
            "",
            "You might have to run `cargo update` to ensure the dependencies are used properly",
        ]
    if missing:
        lines += ["", "No replacements found for the following dependencies:"]
        for diag in missing:
            known = ", ".join(r.version for r in diag.replacements)
            detail = f"known replacement versions: {known}" if known else "no replacements known"
            lines.append(f"* {diag.crate} v{diag.version}, {detail}")
    return "\n".join(lines)


def warning_message(diag: Diagnostic) -> str:
    return f"dependency may not work on WASIX: {diag.summary()}"


def raise_for_blocking(diagnostics: list[Diagnostic]) -> None:
    """Log warnings, then raise if any diagnostic blocks the build.

    Raises:
        IncompatibleCrateBlocking: At least one ``block`` diagnostic.
    """
    for diag in diagnostics:
        if not diag.blocking:
            logger.warning(warning_message(diag))
    blocking = [d for d in diagnostics if d.blocking]
    if blocking:
        raise IncompatibleCrateBlocking(blocking_message(blocking), blocking)
