"""
Shared test fixtures and configuration.
"""

import hashlib
import io
import tarfile
import threading
from pathlib import Path

import pytest

from cargo_wasix.core.errors import NetworkError
from cargo_wasix.core.models.tool import ToolSpec
from cargo_wasix.core.services import wasm

HOST = "linux-x86_64"


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    """Return an (empty, not yet created) cache root."""
    return tmp_path / "cache"


# ── Tools and archives ───────────────────────────────────────────────


def make_tar_gz(files: dict[str, bytes]) -> bytes:
    """Build a .tar.gz archive in memory."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def sha256(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


@pytest.fixture
def tool_spec() -> ToolSpec:
    """A small tool packaged like binaryen releases."""
    return ToolSpec(
        name="wasm-opt",
        version="116",
        constraint=">=116",
        url_template="https://example.invalid/binaryen-version_{version}-{platform}.tar.gz",
        platforms={HOST: "x86_64-linux"},
        archive_format="tar.gz",
        executable="binaryen-version_{version}/bin/wasm-opt{exe}",
    )


@pytest.fixture
def tool_archive() -> bytes:
    return make_tar_gz({"binaryen-version_116/bin/wasm-opt": b"#!/bin/sh\nexit 0\n"})


class FakeFetcher:
    """In-memory stand-in for ``HttpFetcher``.

    ``files`` maps URL → bytes.  ``failures`` is a list of exceptions
    raised by the next downloads, in order.
    """

    def __init__(self, files: dict[str, bytes] | None = None, delay: float = 0.0):
        self.files = dict(files or {})
        self.failures: list[Exception] = []
        self.downloads: list[str] = []
        self.reads: list[str] = []
        self.delay = delay
        self._lock = threading.Lock()

    def download(self, url, dest, *, on_chunk=None):
        with self._lock:
            self.downloads.append(url)
            failure = self.failures.pop(0) if self.failures else None
        if failure is not None:
            raise failure
        if url not in self.files:
            raise NetworkError(f"HTTP 404 Not Found while fetching {url}", url=url, retryable=False)
        if self.delay:
            threading.Event().wait(self.delay)
        data = self.files[url]
        Path(dest).write_bytes(data)
        if on_chunk is not None:
            on_chunk(len(data))
        return len(data)

    def read_text(self, url):
        with self._lock:
            self.reads.append(url)
        if url not in self.files:
            raise NetworkError(f"HTTP 404 Not Found while fetching {url}", url=url, retryable=False)
        return self.files[url].decode("utf-8")


@pytest.fixture
def fetcher(tool_spec, tool_archive) -> FakeFetcher:
    return FakeFetcher({tool_spec.url_for(HOST): tool_archive})


# ── Wasm modules ─────────────────────────────────────────────────────


def build_module(*sections: wasm.Section) -> bytes:
    return wasm.encode_module(list(sections))


def name_section(function_names: list[tuple[int, str]]) -> wasm.Section:
    body = wasm.encode_name_section(
        [(wasm.NameSubsection.FUNCTION, wasm.encode_name_map(function_names))]
    )
    return wasm.make_custom_section(wasm.NAME_SECTION, body)


# Type section with one `() -> ()` function type.
TYPE_SECTION = wasm.Section(1, b"\x01\x60\x00\x00")
