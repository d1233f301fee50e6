"""
Build use case — one ``cargo wasix <subcommand>`` from start to finish.

Order of operations:

    1. resolve the runtime (run-like subcommands only), fail before building
    2. find the `wasix` toolchain, installing a prebuilt one when allowed
    3. dependency graph → incompatible-crate check (``block`` stops here)
    4. cargo, collecting wasm artifacts and deferred runs
    5. locate and post-process every artifact (skipped for check/fix)
    6. run each deferred invocation; the first non-zero exit wins
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from cargo_wasix.adapters.base import ProcessExecutor
from cargo_wasix.adapters.shell.command import SubprocessExecutor
from cargo_wasix.core.config.loader import Settings
from cargo_wasix.core.data.tools import WASM_BINDGEN, WASM_OPT
from cargo_wasix.core.errors import EXIT_OK, UnderlyingToolFailure
from cargo_wasix.core.models.artifact import BuildArtifact
from cargo_wasix.core.models.compat import Diagnostic
from cargo_wasix.core.models.pipeline import PipelineContext, PipelineFlags
from cargo_wasix.core.persistence.atomic import atomic_write_text
from cargo_wasix.core.services.artifact import ArtifactLocator
from cargo_wasix.core.services.cargo import Cargo, CargoBuild, CargoInvocation, CompiledWasm
from cargo_wasix.core.services.compat import (
    CompatibilityChecker,
    DatasetLoader,
    raise_for_blocking,
    read_dependency_graph,
)
from cargo_wasix.core.services.pipeline import PostProcessor, ToolProvider
from cargo_wasix.core.services.runner import Runner, resolve_runtime
from cargo_wasix.core.services.tool_cache import ToolCache, cache_from_settings
from cargo_wasix.core.services.tool_cache.download import HttpFetcher, file_digest
from cargo_wasix.core.services.toolchain import ToolchainInstaller

logger = logging.getLogger(__name__)

PROCESSED_SUFFIX = ".wasix-processed"


@dataclass
class BuildRequest:
    """What the user asked for."""

    subcommand: str
    bit_width: int = 32
    args: list[str] = field(default_factory=list)
    project_root: Path = field(default_factory=Path.cwd)

    def invocation(self) -> CargoInvocation:
        return CargoInvocation(self.subcommand, self.bit_width, list(self.args))


@dataclass
class BuildResult:
    """Outcome of a build."""

    exit_code: int = EXIT_OK
    artifacts: list[BuildArtifact] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    stages: dict[str, list[str]] = field(default_factory=dict)   # artifact path → stages run
    runs: list[list[str]] = field(default_factory=list)
    wasm_bindgen: str | None = None

    def to_dict(self) -> dict:
        return {
            "exit_code": self.exit_code,
            "artifacts": [a.path for a in self.artifacts],
            "diagnostics": [d.model_dump() for d in self.diagnostics],
            "stages": self.stages,
            "runs": self.runs,
            "wasm_bindgen": self.wasm_bindgen,
        }


# ── Processed markers ───────────────────────────────────────────


def marker_path(artifact: Path) -> Path:
    return artifact.with_name(artifact.name + PROCESSED_SUFFIX)


def already_processed(artifact: Path) -> bool:
    """True when the marker records the artifact's current digest."""
    marker = marker_path(artifact)
    if not marker.is_file():
        return False
    return marker.read_text(encoding="utf-8").strip() == file_digest(artifact)


def mark_processed(artifact: Path) -> None:
    atomic_write_text(marker_path(artifact), file_digest(artifact) + "\n")


# ── Steps ───────────────────────────────────────────────────────


def _target_dir_of(path: Path, triple: str) -> Path | None:
    """``<target_dir>`` for a path shaped ``<target_dir>/<triple>/...``."""
    for parent in path.parents:
        if parent.name == triple:
            return parent.parent
    return None


def check_dependencies(
    request: BuildRequest,
    settings: Settings,
    executor: ProcessExecutor,
    fetcher,
) -> list[Diagnostic]:
    """Run the incompatible-crate check; raises if anything blocks."""
    triple = request.invocation().triple
    try:
        graph = read_dependency_graph(executor, triple, cwd=request.project_root)
    except (UnderlyingToolFailure, ValueError) as e:
        logger.warning("Not checking known incompatible crates: %s", e)
        return []

    entries = DatasetLoader(
        settings.cache_root(),
        settings.incompatible_crates_url,
        fetcher,
        offline=settings.offline,
        max_age_days=settings.dataset_max_age_days,
    ).load()
    diagnostics = CompatibilityChecker(entries).check(graph)
    logger.debug("%d dependencies checked, %d diagnostics", len(graph), len(diagnostics))
    raise_for_blocking(diagnostics)
    return diagnostics


def bindgen_out_dir(settings: Settings, request: BuildRequest, artifact: Path) -> Path:
    """Where wasm-bindgen's JS glue goes: the configured dir, else beside the module."""
    if settings.bindgen_out_dir:
        out = Path(settings.bindgen_out_dir)
        return out if out.is_absolute() else request.project_root / out
    return artifact.parent


def locate_artifacts(
    build: CargoBuild,
    request: BuildRequest,
    settings: Settings,
) -> list[tuple[BuildArtifact, CompiledWasm]]:
    """Resolve every reported module, once per path."""
    triple = request.invocation().triple
    default_dir = settings.resolve_target_dir(request.project_root)
    seen: dict[Path, tuple[BuildArtifact, CompiledWasm]] = {}
    for wasm in build.wasms:
        if wasm.path in seen:
            continue
        locator = ArtifactLocator(_target_dir_of(wasm.path, triple) or default_dir)
        artifact = locator.locate(
            wasm.target,
            wasm.profile,
            request.bit_width,
            test=wasm.subdir == "deps",
            example=wasm.subdir == "examples",
        )
        artifact = artifact.model_copy(update={"fresh": wasm.fresh, "optimized": wasm.optimized})
        seen[wasm.path] = (artifact, wasm)
    return list(seen.values())


def run_build(
    request: BuildRequest,
    settings: Settings,
    *,
    executor: ProcessExecutor | None = None,
    tool_cache: ToolCache | None = None,
    fetcher=None,
    env: Mapping[str, str] | None = None,
    self_exe: str | None = None,
    echo: Callable[[str], None] = print,
) -> BuildResult:
    """Execute one cargo subcommand for a WASIX target.

    Args:
        request: Subcommand, bit width, pass-through args, project root.
        settings: Resolved configuration.
        executor: Process adapter (default: real subprocesses).
        tool_cache: Tool cache (default: built from settings).
        fetcher: Downloader for the dataset and tools (default: HTTP).
        env: Environment for runner and cargo overrides (default: os.environ).
        self_exe: This program, registered as Cargo's runner.
        echo: Sink for cargo's non-JSON stdout.

    Returns:
        BuildResult; ``exit_code`` is the first failing run's code, else 0.

    Raises:
        WasixError: Any failure before the runs (see ``core.errors``).
    """
    env = os.environ if env is None else env
    executor = executor or SubprocessExecutor()
    fetcher = fetcher or HttpFetcher(timeout=settings.download_timeout)
    invocation = request.invocation()
    result = BuildResult()

    # ── Runtime ─────────────────────────────────────────────────
    runtime = None
    if invocation.run_like:
        runtime = resolve_runtime(executor, settings.runner, env)

    # ── Toolchain ───────────────────────────────────────────────
    cache = tool_cache or cache_from_settings(settings, fetcher=fetcher)
    toolchain = ToolchainInstaller(
        executor,
        cache,
        offline=settings.offline,
        install=settings.install_toolchain,
        release_url=settings.toolchain_release_url,
    ).ensure(request.bit_width)
    sysroot = toolchain.sysroot_dir(request.bit_width)
    cargo = Cargo(
        executor,
        env=env,
        self_exe=self_exe,
        sysroot=str(sysroot) if sysroot else None,
        echo=echo,
    )

    # ── Compatibility ───────────────────────────────────────────
    if settings.check_dependencies:
        result.diagnostics = check_dependencies(request, settings, executor, fetcher)

    # ── Compile ─────────────────────────────────────────────────
    build = cargo.build(invocation, cwd=request.project_root)
    result.wasm_bindgen = build.wasm_bindgen

    # ── Post-process ────────────────────────────────────────────
    if not invocation.analysis_only and build.wasms:
        tools = ToolProvider(
            cache,
            overrides={WASM_OPT: settings.wasm_opt, WASM_BINDGEN: settings.wasm_bindgen},
            versions=settings.tool_versions,
        )
        processor = PostProcessor(tools, executor)
        flags = PipelineFlags(optimize=settings.optimize_enabled)

        for artifact, wasm in locate_artifacts(build, request, settings):
            path = Path(artifact.path)
            result.artifacts.append(artifact)
            if artifact.fresh and already_processed(path):
                logger.debug("%s is fresh and already processed", path.name)
                continue
            logger.info("Processing %s", path)
            context = PipelineContext(
                triple=invocation.triple,
                profile=wasm.profile,
                optimized=wasm.optimized,
                debuginfo=wasm.debuginfo,
                bit_width=request.bit_width,
                flags=flags,
                wasm_bindgen_version=build.wasm_bindgen,
                wasm_opt_flags=settings.wasm_opt_flags,
                bindgen_out_dir=str(bindgen_out_dir(settings, request, path)),
            )
            processor.run(artifact, context)
            mark_processed(path)
            result.stages[str(path)] = list(context.stages_run)
            for note in context.diagnostics:
                logger.info(note)

    # ── Run ─────────────────────────────────────────────────────
    if build.runs:
        runner = Runner(executor, runtime or resolve_runtime(executor, settings.runner, env))
        for run in build.runs:
            if not run:
                continue
            result.runs.append(run)
            code = runner.run(run[0], run[1:])
            if code != EXIT_OK:
                result.exit_code = code
                break

    return result
