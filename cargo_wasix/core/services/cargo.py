"""
Compiler invocation — drives ``cargo +wasix`` and reads its JSON messages.

Cargo runs with ``--message-format json-render-diagnostics``: its stdout
is a stream of JSON messages (one per line) while rendered diagnostics
go to stderr, which we leave attached to the terminal.

For ``run``/``test``/``bench`` this process registers itself as Cargo's
runner.  When Cargo "runs" a module it actually launches us in shim
mode, and we only print a ``run-with-args`` message; the real run
happens after post-processing.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from cargo_wasix.adapters.base import ProcessExecutor
from cargo_wasix.core.errors import ToolchainMissing, UnderlyingToolFailure
from cargo_wasix.core.models.artifact import triple_for

logger = logging.getLogger(__name__)

TOOLCHAIN = "wasix"
SHIM_ENV = "__CARGO_WASIX_RUNNER_SHIM"
RUSTFLAGS = "-C target-feature=+atomics"

SUBCOMMANDS = ("build", "run", "test", "bench", "check", "fix")
RUN_LIKE = ("run", "test", "bench")
ANALYSIS_ONLY = ("check", "fix")

# Module dirs below a profile dir: test/bench harnesses and examples.
_SUBDIRS = ("deps", "examples")


def runner_env_var(bit_width: int) -> str:
    """Cargo's per-target runner variable, e.g. ``CARGO_TARGET_WASM32_WASMER_WASI_RUNNER``."""
    return f"CARGO_TARGET_{triple_for(bit_width).upper().replace('-', '_')}_RUNNER"


def sysroot_for(bit_width: int) -> str:
    return f"/opt/wasix-libc/sysroot{bit_width}/"


def shim_message(args: list[str]) -> str:
    """What shim mode prints for Cargo to relay back to us."""
    return json.dumps({"reason": "run-with-args", "args": list(args)})


# ── Invocation ──────────────────────────────────────────────────


@dataclass
class CargoInvocation:
    """One ``cargo wasix <subcommand>`` request."""

    subcommand: str
    bit_width: int = 32
    args: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.subcommand not in SUBCOMMANDS:
            raise ValueError(f"unsupported cargo subcommand: {self.subcommand!r}")

    @property
    def triple(self) -> str:
        return triple_for(self.bit_width)

    @property
    def run_like(self) -> bool:
        return self.subcommand in RUN_LIKE

    @property
    def analysis_only(self) -> bool:
        return self.subcommand in ANALYSIS_ONLY

    @property
    def verbose(self) -> bool:
        return any(a == "--verbose" or (a.startswith("-v") and set(a[1:]) == {"v"}) for a in self.args)

    def command(self) -> list[str]:
        return [
            "cargo",
            f"+{TOOLCHAIN}",
            self.subcommand,
            "--target",
            self.triple,
            "--message-format",
            "json-render-diagnostics",
            *self.args,
        ]

    def environment(
        self, env: Mapping[str, str], self_exe: str | None, sysroot: str | None = None
    ) -> dict[str, str]:
        """Environment overrides for the cargo child process.

        ``sysroot`` is the wasix-libc dir of a downloaded toolchain; a
        user-set ``WASI_SDK_DIR`` still wins over it.
        """
        overrides = {"RUSTFLAGS": RUSTFLAGS}
        if not env.get("WASI_SDK_DIR"):
            overrides["WASI_SDK_DIR"] = sysroot or sysroot_for(self.bit_width)
        if self.run_like and self_exe:
            overrides[SHIM_ENV] = "1"
            overrides[runner_env_var(self.bit_width)] = self_exe
        return overrides


# ── Message stream ──────────────────────────────────────────────


@dataclass
class CompiledWasm:
    """A ``.wasm`` file reported by a ``compiler-artifact`` message."""

    path: Path
    profile: str          # directory name under the triple: debug, release, ...
    test: bool = False
    fresh: bool = False
    opt_level: str = "0"
    debuginfo: bool | None = None
    package_id: str = ""

    @property
    def target(self) -> str:
        return self.path.stem

    @property
    def subdir(self) -> str | None:
        """``deps`` or ``examples`` when the module sits below the profile dir."""
        name = self.path.parent.name
        return name if name in _SUBDIRS else None

    @property
    def optimized(self) -> bool:
        return self.opt_level != "0"


@dataclass
class CargoBuild:
    """Everything learned from one cargo run."""

    wasm_bindgen: str | None = None
    wasms: list[CompiledWasm] = field(default_factory=list)
    runs: list[list[str]] = field(default_factory=list)
    build_scripts: int = 0
    success: bool | None = None


def _profile_dir(path: Path) -> str:
    parent = path.parent
    if parent.name in _SUBDIRS:
        parent = parent.parent
    return parent.name


def _debuginfo(value) -> bool | None:
    # Cargo reports a level (0-2), null, or a name such as "line-tables-only".
    if value is None:
        return None
    if isinstance(value, str):
        return value not in ("0", "none", "false")
    return bool(value)


def _bindgen_version(package_id: str) -> str | None:
    # Old format: "wasm-bindgen 0.2.92 (registry+...)";
    # new format: "registry+https://...#wasm-bindgen@0.2.92".
    parts = package_id.split()
    if len(parts) >= 2 and parts[0] == "wasm-bindgen":
        return parts[1]
    fragment = package_id.rpartition("#")[2]
    name, sep, version = fragment.partition("@")
    if sep and name == "wasm-bindgen":
        return version
    return None


def parse_messages(stdout: str, echo: Callable[[str], None] = print) -> CargoBuild:
    """Fold cargo's JSON message stream into a ``CargoBuild``.

    Lines that are not JSON objects are echoed unchanged; unknown
    message reasons are ignored.
    """
    build = CargoBuild()
    for line in stdout.splitlines():
        if not line.startswith("{"):
            echo(line)
            continue
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            echo(line)
            continue
        reason = msg.get("reason")

        if reason == "compiler-artifact":
            package_id = msg.get("package_id", "")
            version = _bindgen_version(package_id)
            if version:
                build.wasm_bindgen = version
            profile = msg.get("profile") or {}
            for filename in msg.get("filenames", []):
                path = Path(filename)
                if path.suffix != ".wasm":
                    continue
                build.wasms.append(
                    CompiledWasm(
                        path=path,
                        profile=_profile_dir(path),
                        test=bool(profile.get("test")),
                        fresh=bool(msg.get("fresh")),
                        opt_level=str(profile.get("opt_level", "0")),
                        debuginfo=_debuginfo(profile.get("debuginfo")),
                        package_id=package_id,
                    )
                )
        elif reason == "run-with-args":
            build.runs.append([str(a) for a in msg.get("args", [])])
        elif reason == "build-script-executed":
            build.build_scripts += 1
        elif reason == "build-finished":
            build.success = msg.get("success")
        else:
            logger.debug("Ignoring cargo message %r", reason)
    return build


# ── Cargo driver ────────────────────────────────────────────────


class Cargo:
    """Runs cargo through a process executor.

    Args:
        executor: Process adapter.
        env: Environment the overrides are computed against.
        self_exe: Path registered as Cargo's runner for run-like commands.
        sysroot: wasix-libc sysroot to export as ``WASI_SDK_DIR``.
        echo: Where non-JSON stdout lines go.
    """

    def __init__(
        self,
        executor: ProcessExecutor,
        *,
        env: Mapping[str, str] | None = None,
        self_exe: str | None = None,
        sysroot: str | None = None,
        echo: Callable[[str], None] = print,
    ):
        self.executor = executor
        self.env = os.environ if env is None else env
        self.self_exe = self_exe
        self.sysroot = sysroot
        self.echo = echo

    def build(self, invocation: CargoInvocation, cwd: Path | None = None) -> CargoBuild:
        """Run cargo and parse what it reported.

        Raises:
            UnderlyingToolFailure: cargo exited non-zero.
        """
        command = invocation.command()
        overrides = invocation.environment(self.env, self.self_exe, self.sysroot)
        logger.info("Running %s", " ".join(command))
        logger.debug("WASI_SDK_DIR=%s", overrides.get("WASI_SDK_DIR", self.env.get("WASI_SDK_DIR")))

        result = self.executor.run(command, cwd=cwd, env=overrides, capture=True, capture_stderr=False)
        if result.not_found:
            raise ToolchainMissing("`cargo` was not found in $PATH; install Rust from https://rustup.rs")

        build = parse_messages(result.stdout, self.echo)
        if result.failed:
            raise UnderlyingToolFailure(command, result.returncode)
        logger.debug(
            "cargo reported %d wasm artifacts, %d runs (wasm-bindgen: %s)",
            len(build.wasms),
            len(build.runs),
            build.wasm_bindgen or "none",
        )
        return build
