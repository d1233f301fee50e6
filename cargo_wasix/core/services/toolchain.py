"""
WASIX Rust toolchain — find, install and verify the ``wasix`` rustup toolchain.

When rustup has no ``wasix`` toolchain, the latest prebuilt release is
fetched from GitHub into the tool cache and linked::

    <cache_root>/toolchains/<host-triple>_<tag>/rust/      rustc, cargo, std
    <cache_root>/toolchains/<host-triple>_<tag>/sysroot/   sysroot32, sysroot64

The install is staged under a ``.tmp-*`` dir and renamed into place
while the cache lock is held, like a tool install.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path

from cargo_wasix.adapters.base import ProcessExecutor
from cargo_wasix.core.config.loader import DEFAULT_TOOLCHAIN_RELEASE_URL
from cargo_wasix.core.errors import ToolchainMissing, UnderlyingToolFailure
from cargo_wasix.core.models.artifact import triple_for
from cargo_wasix.core.persistence.atomic import replace_dir
from cargo_wasix.core.services.cargo import TOOLCHAIN
from cargo_wasix.core.services.tool_cache import ToolCache
from cargo_wasix.core.services.tool_cache.extract import extract_archive
from cargo_wasix.core.services.tool_cache.platform import is_windows

logger = logging.getLogger(__name__)

TOOLCHAINS_DIR = "toolchains"
SYSROOT_ASSET = "wasix-libc.tar.gz"

# Host key → triple of the prebuilt toolchains published per release.
HOST_TRIPLES = {
    "linux-x86_64": "x86_64-unknown-linux-gnu",
    "macos-x86_64": "x86_64-apple-darwin",
    "macos-aarch64": "aarch64-apple-darwin",
    "windows-x86_64": "x86_64-pc-windows-msvc",
}

_MARKERS = re.compile(r"\([^)]*\)")

_HINT = (
    "install it with the WASIX installer from https://wasix.org, or link a local "
    "build with `rustup toolchain link wasix <path-to-toolchain>`"
)


@dataclass
class Toolchain:
    """A rustup toolchain; ``path`` is the directory rustup links to, when known."""

    name: str
    path: Path | None = None

    def sysroot_dir(self, bit_width: int) -> Path | None:
        """The wasix-libc sysroot installed beside a downloaded toolchain."""
        if self.path is None:
            return None
        candidate = self.path.parent / "sysroot" / f"sysroot{bit_width}"
        return candidate if candidate.is_dir() else None


def _asset_name(triple: str) -> str:
    return f"rust-toolchain-{triple}.tar.gz"


def _unwrap(directory: Path, wrapper: str) -> None:
    """Lift the children of ``directory/wrapper`` one level up."""
    inner = directory / wrapper
    if not inner.is_dir():
        return
    for item in inner.iterdir():
        item.rename(directory / item.name)
    inner.rmdir()


def _make_executable(*dirs: Path) -> None:
    for directory in dirs:
        if not directory.is_dir():
            continue
        for entry in directory.iterdir():
            if entry.is_file():
                entry.chmod(entry.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


class ToolchainInstaller:
    """Makes sure ``cargo +wasix`` can build for a WASIX target.

    Args:
        executor: Process adapter for rustup and rustc.
        cache: Tool cache; owns the lock, downloads and staging dirs.
        offline: Never download; a missing toolchain is an error.
        install: Download a prebuilt toolchain when it is missing.
        release_url: GitHub API URL of the release to install.
    """

    def __init__(
        self,
        executor: ProcessExecutor,
        cache: ToolCache,
        *,
        offline: bool = False,
        install: bool = True,
        release_url: str = DEFAULT_TOOLCHAIN_RELEASE_URL,
    ):
        self.executor = executor
        self.cache = cache
        self.offline = offline
        self.install = install
        self.release_url = release_url

    # ── Discovery ───────────────────────────────────────────────

    def find(self) -> Toolchain | None:
        """The linked ``wasix`` toolchain, if rustup knows one.

        Raises:
            ToolchainMissing: rustup itself is not installed.
        """
        result = self.executor.run(["rustup", "toolchain", "list", "--verbose"], capture=True)
        if result.not_found:
            raise ToolchainMissing(
                "`rustup` was not found in $PATH; install Rust from https://rustup.rs"
            )
        if result.failed:
            raise UnderlyingToolFailure(result.command, result.returncode, result.stdout, result.stderr)
        for line in result.stdout.splitlines():
            name, _, rest = line.strip().partition(" ")
            if name == TOOLCHAIN:
                # `--verbose` appends the path, after markers such as "(default)".
                location = _MARKERS.sub("", rest).strip()
                return Toolchain(TOOLCHAIN, Path(location) if location else None)
        return None

    # ── Install ─────────────────────────────────────────────────

    def ensure(self, bit_width: int = 32) -> Toolchain:
        """Return a verified ``wasix`` toolchain, installing it if allowed.

        Raises:
            ToolchainMissing: Absent and not installable, or lacking the target.
            NetworkError: The release download failed after retries.
            ExtractionFailure: A release archive is corrupt or unsafe.
            LockTimeout: Another process held the cache lock too long.
        """
        toolchain = self.find()
        if toolchain is None:
            if self.offline or not self.install:
                reason = "CARGO_WASIX_OFFLINE is set" if self.offline else "toolchain installs are disabled"
                raise ToolchainMissing(
                    f"the `wasix` rustup toolchain is not installed and {reason}; {_HINT}"
                )
            with self.cache.lock():
                # Another process may have linked it while we waited.
                toolchain = self.find() or self.install_prebuilt()
        self.verify(toolchain, bit_width)
        return toolchain

    def install_prebuilt(self) -> Toolchain:
        """Download the latest prebuilt toolchain and link it; caller holds the lock."""
        triple = HOST_TRIPLES.get(self.cache.host)
        if triple is None:
            raise ToolchainMissing(f"no prebuilt `wasix` toolchain exists for {self.cache.host}; {_HINT}")

        logger.info("Finding latest wasix toolchain release (%s)", self.release_url)
        raw = self.cache.read_text(self.release_url, "wasix toolchain release info")
        try:
            release = json.loads(raw)
            tag = release["tag_name"]
            assets = {a["name"]: a["browser_download_url"] for a in release.get("assets", [])}
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ToolchainMissing(f"cannot read release info from {self.release_url}: {e}") from e

        rust_url = assets.get(_asset_name(triple))
        if rust_url is None:
            raise ToolchainMissing(f"release {tag} has no prebuilt toolchain for {triple}; {_HINT}")
        sysroot_url = assets.get(SYSROOT_ASSET)
        if sysroot_url is None:
            raise ToolchainMissing(f"release {tag} has no {SYSROOT_ASSET} sysroot asset")

        final = self.cache.root / TOOLCHAINS_DIR / f"{triple}_{tag}"
        work = self.cache.staging_dir()
        try:
            stage = work / "toolchain"
            for name, url, what in (
                ("sysroot", sysroot_url, "wasix-libc sysroot"),
                ("rust", rust_url, f"wasix toolchain {tag}"),
            ):
                archive = work / f"{name}.tar.gz"
                logger.info("Downloading %s from %s", what, url)
                self.cache.download(url, archive, what)
                (stage / name).mkdir(parents=True)
                extract_archive(archive, stage / name, "tar.gz")
            _unwrap(stage / "sysroot", "wasix-libc")
            if not is_windows(self.cache.host):
                rust = stage / "rust"
                _make_executable(rust / "bin", rust / "lib" / "rustlib" / triple / "bin")
            final.parent.mkdir(parents=True, exist_ok=True)
            replace_dir(stage, final)
        finally:
            shutil.rmtree(work, ignore_errors=True)

        logger.info("Installed wasix toolchain %s → %s", tag, final)
        return self.link(final / "rust")

    def link(self, rust_dir: Path) -> Toolchain:
        """Point rustup's ``wasix`` toolchain at ``rust_dir``."""
        rustc = rust_dir / "bin" / ("rustc.exe" if is_windows(self.cache.host) else "rustc")
        if not rustc.is_file():
            raise ToolchainMissing(f"invalid toolchain directory: {rustc} does not exist")

        # rustup misbehaves when relinking over an existing name.
        if self.find() is not None:
            self._rustup(["toolchain", "remove", TOOLCHAIN])
        self._rustup(["toolchain", "link", TOOLCHAIN, str(rust_dir)])
        logger.info("rustup toolchain %s linked to %s", TOOLCHAIN, rust_dir)
        return Toolchain(TOOLCHAIN, rust_dir)

    def _rustup(self, args: list[str]) -> None:
        result = self.executor.run(["rustup", *args], capture=True, capture_stderr=True)
        if result.failed:
            raise UnderlyingToolFailure(result.command, result.returncode, result.stdout, result.stderr)

    # ── Verification ────────────────────────────────────────────

    def verify(self, toolchain: Toolchain, bit_width: int) -> None:
        """Check the toolchain's sysroot carries the standard library for the target.

        Raises:
            ToolchainMissing: The target's ``lib/rustlib`` dir is missing.
        """
        triple = triple_for(bit_width)
        sysroot = self.executor.run(
            ["rustc", "--print", "sysroot"],
            env={"RUSTUP_TOOLCHAIN": toolchain.name},
            capture=True,
        )
        if sysroot.ok and sysroot.stdout.strip():
            target_lib = Path(sysroot.stdout.strip()) / "lib" / "rustlib" / triple
            if not target_lib.exists():
                raise ToolchainMissing(
                    f"the `wasix` toolchain has no `{triple}` target (looked in {target_lib}); {_HINT}"
                )
        logger.debug("Toolchain `%s` ready for %s", toolchain.name, triple)
