"""
Post-processing stages.

Each stage reads the current module at ``src`` and writes its result to
``dst`` (a sibling temp file), returning whether it wrote anything.  The
processor owns committing ``dst`` over the artifact, so a stage never
touches the artifact path itself.

Stages signal a missing external tool with ``MissingTool``; every other
exception is a stage failure.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from cargo_wasix.adapters.base import ProcessExecutor
from cargo_wasix.core.data.tools import WASM_BINDGEN, WASM_OPT
from cargo_wasix.core.errors import MissingTool, UnderlyingToolFailure
from cargo_wasix.core.models.artifact import BuildArtifact
from cargo_wasix.core.models.pipeline import PipelineContext
from cargo_wasix.core.services import wasm
from cargo_wasix.core.services.demangle import demangle

logger = logging.getLogger(__name__)


@dataclass
class StageEnv:
    """What stages may use besides the module bytes."""

    executor: ProcessExecutor
    tools: object    # ToolProvider; ``find(name, context) -> Path``

    def run_tool(self, command: list[str], tool: str) -> None:
        result = self.executor.run(command, capture=True, capture_stderr=True)
        if result.not_found:
            raise MissingTool(tool, f"{command[0]} could not be executed")
        if result.failed:
            raise UnderlyingToolFailure(command, result.returncode, result.stdout, result.stderr)


class Stage(ABC):
    """One transformation of a module."""

    name: str = ""

    @abstractmethod
    def enabled(self, artifact: BuildArtifact, context: PipelineContext) -> bool:
        ...

    @abstractmethod
    def apply(
        self,
        src: Path,
        dst: Path,
        artifact: BuildArtifact,
        context: PipelineContext,
        env: StageEnv,
    ) -> bool:
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"


# ── In-process stages ───────────────────────────────────────────


class DemangleStage(Stage):
    """Rewrite function names in the ``name`` section to readable Rust paths."""

    name = "demangle"

    def enabled(self, artifact, context):
        return context.flags.demangle

    def apply(self, src, dst, artifact, context, env):
        sections = wasm.parse_module(src.read_bytes())
        renamed = 0
        out = []
        for section in sections:
            if wasm.custom_section_name(section) != wasm.NAME_SECTION:
                out.append(section)
                continue
            subsections = []
            for sub_id, payload in wasm.parse_name_section(wasm.custom_section_body(section)):
                if sub_id == wasm.NameSubsection.FUNCTION:
                    names = wasm.decode_name_map(payload)
                    demangled = [(idx, demangle(name)) for idx, name in names]
                    renamed += sum(1 for a, b in zip(names, demangled) if a[1] != b[1])
                    payload = wasm.encode_name_map(demangled)
                subsections.append((sub_id, payload))
            out.append(
                wasm.make_custom_section(wasm.NAME_SECTION, wasm.encode_name_section(subsections))
            )
        if not renamed:
            logger.debug("No mangled names in %s", src.name)
            return False
        dst.write_bytes(wasm.encode_module(out))
        logger.debug("Demangled %d function names in %s", renamed, src.name)
        return True


class StripStage(Stage):
    """Drop DWARF (``.debug*``) custom sections from optimized builds without debug info."""

    name = "strip"

    def enabled(self, artifact, context):
        return context.flags.strip and context.is_release and not context.keeps_debuginfo

    def apply(self, src, dst, artifact, context, env):
        sections = wasm.parse_module(src.read_bytes())
        kept = [
            s for s in sections
            if not (wasm.custom_section_name(s) or "").startswith(".debug")
        ]
        if len(kept) == len(sections):
            return False
        dst.write_bytes(wasm.encode_module(kept))
        logger.debug("Stripped %d debug sections from %s", len(sections) - len(kept), src.name)
        return True


# ── External tool stages ────────────────────────────────────────


class BindgenStage(Stage):
    """Run ``wasm-bindgen`` when the build linked it (32-bit only)."""

    name = "bindgen"

    def enabled(self, artifact, context):
        return (
            context.flags.bindgen
            and context.wasm_bindgen_version is not None
            and context.bit_width == 32
        )

    def apply(self, src, dst, artifact, context, env):
        exe = env.tools.find(WASM_BINDGEN, context)
        stem = Path(artifact.path).stem
        with tempfile.TemporaryDirectory(prefix=".bindgen-", dir=src.parent) as out_dir:
            command = [
                str(exe),
                str(src),
                "--out-dir", out_dir,
                "--out-name", stem,
                "--target", "web",
                "--no-typescript",
            ]
            if context.keeps_debuginfo:
                command.append("--keep-debug")
            env.run_tool(command, WASM_BINDGEN)

            produced = Path(out_dir) / f"{stem}_bg.wasm"
            if not produced.is_file():
                raise FileNotFoundError(f"wasm-bindgen did not produce {produced.name}")
            os.replace(produced, dst)

            if context.bindgen_out_dir:
                glue_dir = Path(context.bindgen_out_dir)
                glue_dir.mkdir(parents=True, exist_ok=True)
                for item in Path(out_dir).iterdir():
                    target = glue_dir / item.name
                    if target.is_dir() and not target.is_symlink():
                        shutil.rmtree(target)
                    shutil.move(str(item), target)
                context.note(f"wasm-bindgen glue written to {glue_dir}")
        return True


class OptimizeStage(Stage):
    """Run ``wasm-opt`` with asyncify enabled."""

    name = "optimize"

    def enabled(self, artifact, context):
        return context.flags.optimize

    def command(self, exe: Path, src: Path, dst: Path, context: PipelineContext) -> list[str]:
        command = [str(exe), str(src), "-o", str(dst), "--asyncify"]
        if context.is_release:
            command.append("-O")
        if context.keeps_debuginfo:
            command.append("--debuginfo")
        if context.bit_width == 64:
            command.append("--enable-memory64")
        command.extend(context.wasm_opt_flags)
        return command

    def apply(self, src, dst, artifact, context, env):
        exe = env.tools.find(WASM_OPT, context)
        env.run_tool(self.command(exe, src, dst, context), WASM_OPT)
        if not dst.is_file() or dst.stat().st_size == 0:
            raise FileNotFoundError(f"wasm-opt did not write {dst.name}")
        return True


def default_stages() -> list[Stage]:
    """The canonical order: demangle, strip, bindgen, optimize."""
    return [DemangleStage(), StripStage(), BindgenStage(), OptimizeStage()]
