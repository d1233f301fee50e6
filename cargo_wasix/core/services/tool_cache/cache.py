"""
Tool cache — versioned on-disk store of auxiliary binaries.

Layout under the cache root::

    <root>/.lock                                 cross-process lock
    <root>/<name>-<host>-<version>/metadata.json one slot per installed tool
    <root>/.tmp-*/                               in-flight installs (never read)

A slot only ever appears through a single directory rename, so readers
either see a complete install or nothing.  ``lookup`` never locks;
``ensure`` and ``clear`` serialize through ``CacheLock``.
"""

from __future__ import annotations

import logging
import shutil
import stat
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from cargo_wasix.core.errors import ChecksumMismatch, ExtractionFailure, ToolUnavailable
from cargo_wasix.core.models.tool import CachedTool, ToolSpec
from cargo_wasix.core.persistence.atomic import atomic_write_json, read_json, replace_dir
from cargo_wasix.core.reliability.backoff import Backoff
from cargo_wasix.core.services.tool_cache.download import (
    HttpFetcher,
    is_retryable,
    parse_sidecar,
    verify_checksum,
)
from cargo_wasix.core.services.tool_cache.extract import extract_archive
from cargo_wasix.core.services.tool_cache.lock import LOCK_FILE, CacheLock
from cargo_wasix.core.services.tool_cache.platform import host_key, is_windows

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
TEMP_PREFIX = ".tmp-"


class Fetcher(Protocol):
    """What the cache needs from a downloader."""

    def download(self, url: str, dest: Path, *, on_chunk: Callable[[int], None] | None = None) -> int:
        ...

    def read_text(self, url: str) -> str:
        ...


class ToolCache:
    """Handle on one cache root.

    Args:
        root: Cache root directory (created on first install).
        fetcher: Downloader; defaults to ``HttpFetcher``.
        host: Host key; defaults to the running machine.
        lock_timeout: Bounded wait for the cache lock, seconds.
        temp_max_age: Age of a ``.tmp-*`` dir after which it counts as abandoned.
        backoff: Retry policy for downloads.
        sleep: Injectable sleep used between retries.
    """

    def __init__(
        self,
        root: Path,
        *,
        fetcher: Fetcher | None = None,
        host: str | None = None,
        lock_timeout: float = 300.0,
        temp_max_age: float = 600.0,
        backoff: Backoff | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.root = Path(root)
        self.fetcher = fetcher or HttpFetcher()
        self.host = host or host_key()
        self.lock_timeout = lock_timeout
        self.temp_max_age = temp_max_age
        self.backoff = backoff or Backoff()
        self._sleep = sleep

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILE

    def lock(self) -> CacheLock:
        return CacheLock(self.lock_path, timeout=self.lock_timeout)

    def slot_dir(self, spec: ToolSpec) -> Path:
        return self.root / spec.slot_name(self.host)

    # ── Read side ───────────────────────────────────────────────

    def _load_slot(self, slot: Path) -> CachedTool | None:
        data = read_json(slot / METADATA_FILE)
        if not isinstance(data, dict):
            return None
        try:
            return CachedTool.model_validate({**data, "install_dir": str(slot)})
        except ValidationError as e:
            logger.warning("Ignoring invalid tool metadata in %s: %s", slot, e)
            return None

    def lookup(self, spec: ToolSpec) -> CachedTool | None:
        """Return the installed tool for ``spec``, or None when absent or stale."""
        tool = self._load_slot(self.slot_dir(spec))
        if tool is None:
            return None
        if tool.name != spec.name or not tool.satisfies(spec):
            logger.debug("Cached %s %s does not satisfy %s", tool.name, tool.version, spec.requirement)
            return None
        if not tool.executable_path.is_file():
            logger.debug("Cached %s is missing its executable", tool.name)
            return None
        return tool

    def installed(self) -> list[CachedTool]:
        """Every complete install under the root, sorted by slot name."""
        if not self.root.is_dir():
            return []
        tools = []
        for slot in sorted(self.root.iterdir()):
            if slot.is_dir() and not slot.name.startswith("."):
                tool = self._load_slot(slot)
                if tool is not None:
                    tools.append(tool)
        return tools

    # ── Write side ──────────────────────────────────────────────

    def ensure(self, spec: ToolSpec) -> CachedTool:
        """Return a complete install of ``spec``, downloading it if needed.

        Raises:
            ToolUnavailable: No release of the tool exists for this host.
            NetworkError: Download failed after retries.
            ChecksumMismatch: Archive digest differs from the published one.
            ExtractionFailure: Archive is corrupt, unsafe or lacks the executable.
            LockTimeout: Another process held the cache lock too long.
        """
        if spec.release_platform(self.host) is None:
            raise ToolUnavailable(
                f"no prebuilt {spec.name} {spec.version} for {self.host}; "
                f"install it yourself and point {spec.name.upper().replace('-', '_')} at it"
            )

        tool = self.lookup(spec)
        if tool is not None:
            logger.debug("Using cached %s %s", tool.name, tool.version)
            return tool

        with self.lock():
            # Another process may have finished the install while we waited.
            tool = self.lookup(spec)
            if tool is not None:
                logger.debug("%s %s installed by another process", tool.name, tool.version)
                return tool
            self._sweep_temp()
            return self._install(spec)

    def staging_dir(self) -> Path:
        """A private ``.tmp-*`` dir under the root; lookups never see it."""
        self.root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=TEMP_PREFIX, dir=self.root))

    def download(self, url: str, dest: Path, what: str) -> None:
        """Fetch ``url`` to ``dest`` with bounded retries on transient errors."""
        self.backoff.call(
            lambda: self.fetcher.download(url, dest),
            retryable=is_retryable,
            describe=f"download of {what}",
            sleep=self._sleep,
        )

    def read_text(self, url: str, what: str) -> str:
        return self.backoff.call(
            lambda: self.fetcher.read_text(url),
            retryable=is_retryable,
            describe=f"fetch of {what}",
            sleep=self._sleep,
        )

    def _install(self, spec: ToolSpec) -> CachedTool:
        host = self.host
        url = spec.url_for(host)
        logger.info("Installing %s %s for %s", spec.name, spec.version, host)

        work = self.staging_dir()
        try:
            archive = work / f"archive.{spec.archive_format}"
            self.download(url, archive, spec.name)

            expected = self._expected_checksum(spec)
            if expected:
                ok, actual = verify_checksum(archive, expected)
                if not ok:
                    raise ChecksumMismatch(spec.name, spec.version, expected, actual)
                logger.debug("Checksum verified for %s", archive.name)
            else:
                logger.warning("No checksum published for %s %s; skipping verification", spec.name, spec.version)

            stage = work / "slot"
            stage.mkdir()
            extract_archive(archive, stage, spec.archive_format)

            executable = spec.executable_for(host)
            exe_path = stage / executable
            if not exe_path.is_file():
                raise ExtractionFailure(f"{spec.name} archive from {url} does not contain {executable}")
            if not is_windows(host):
                mode = exe_path.stat().st_mode
                exe_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

            slot = self.slot_dir(spec)
            tool = CachedTool(
                name=spec.name,
                version=spec.version,
                platform=host,
                install_dir=str(slot),
                executable=executable,
            )
            atomic_write_json(stage / METADATA_FILE, tool.model_dump(exclude={"install_dir"}))
            replace_dir(stage, slot)
        finally:
            shutil.rmtree(work, ignore_errors=True)

        logger.info("Installed %s %s → %s", tool.name, tool.version, slot)
        return tool

    def _expected_checksum(self, spec: ToolSpec) -> str | None:
        static = spec.checksums.get(self.host)
        if static:
            return static
        sidecar_url = spec.checksum_url_for(self.host)
        if not sidecar_url:
            return None
        return parse_sidecar(self.read_text(sidecar_url, f"{spec.name} checksum"))

    def _sweep_temp(self) -> None:
        """Remove abandoned install dirs; caller holds the lock."""
        cutoff = time.time() - self.temp_max_age
        for entry in self.root.glob(f"{TEMP_PREFIX}*"):
            try:
                if entry.is_dir() and entry.stat().st_mtime < cutoff:
                    logger.debug("Sweeping abandoned %s", entry.name)
                    shutil.rmtree(entry, ignore_errors=True)
            except FileNotFoundError:
                continue

    def clear(self) -> int:
        """Remove every cached tool and dataset; returns entries removed."""
        if not self.root.exists():
            logger.debug("Cache root %s does not exist; nothing to clear", self.root)
            return 0
        removed = 0
        with self.lock():
            for entry in self.root.iterdir():
                if entry.name.startswith(LOCK_FILE):
                    continue
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink(missing_ok=True)
                removed += 1
        logger.info("Cleared %d entries from %s", removed, self.root)
        return removed


def cache_from_settings(settings, *, fetcher: Fetcher | None = None) -> ToolCache:
    """Build a ``ToolCache`` configured from ``Settings``."""
    return ToolCache(
        settings.cache_root(),
        fetcher=fetcher or HttpFetcher(timeout=settings.download_timeout),
        lock_timeout=settings.lock_timeout,
        temp_max_age=settings.temp_max_age,
        backoff=Backoff(max_attempts=max(1, settings.download_attempts)),
    )
