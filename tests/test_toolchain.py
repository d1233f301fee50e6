"""
Tests for finding, installing and verifying the wasix toolchain.
"""

import json
import os
from pathlib import Path

import pytest

from conftest import HOST, FakeFetcher, make_tar_gz
from cargo_wasix.adapters.mock import FakeExecutor
from cargo_wasix.core.errors import NetworkError, ToolchainMissing, UnderlyingToolFailure
from cargo_wasix.core.models.process import ProcessResult
from cargo_wasix.core.reliability.backoff import Backoff
from cargo_wasix.core.services.tool_cache import ToolCache
from cargo_wasix.core.services.toolchain import HOST_TRIPLES, Toolchain, ToolchainInstaller

RELEASE_URL = "https://api.example.invalid/repos/wasix-org/rust/releases/latest"
RUST_URL = "https://example.invalid/rust-toolchain-x86_64-unknown-linux-gnu.tar.gz"
SYSROOT_URL = "https://example.invalid/wasix-libc.tar.gz"
TRIPLE = HOST_TRIPLES[HOST]
TAG = "v2024-06-01.1"


def _release(*asset_names) -> bytes:
    urls = {f"rust-toolchain-{TRIPLE}.tar.gz": RUST_URL, "wasix-libc.tar.gz": SYSROOT_URL}
    names = asset_names or tuple(urls)
    return json.dumps({
        "tag_name": TAG,
        "assets": [{"name": n, "browser_download_url": urls.get(n, "https://x.invalid/" + n)} for n in names],
    }).encode()


def _archives() -> dict[str, bytes]:
    return {
        RUST_URL: make_tar_gz({
            "bin/rustc": b"#!/bin/sh\n",
            "bin/cargo": b"#!/bin/sh\n",
            f"lib/rustlib/{TRIPLE}/bin/rust-lld": b"#!/bin/sh\n",
            "lib/rustlib/wasm32-wasmer-wasi/lib/libstd.rlib": b"std",
        }),
        SYSROOT_URL: make_tar_gz({
            "wasix-libc/sysroot32/lib/wasm32-wasi/libc.a": b"libc32",
            "wasix-libc/sysroot64/lib/wasm64-wasi/libc.a": b"libc64",
        }),
    }


class FakeRustup:
    """rustup whose toolchain list reflects ``link``/``remove`` calls."""

    def __init__(self, executor: FakeExecutor, linked: str | None = None):
        self.linked = linked
        executor.set_response("rustup", self)
        executor.set_response("rustc", self._rustc)

    def __call__(self, req):
        args = req.command[1:]
        if args[:2] == ["toolchain", "list"]:
            lines = ["stable-x86_64-unknown-linux-gnu (default) /home/u/.rustup/toolchains/stable"]
            if self.linked is not None:
                lines.append(f"wasix {self.linked}".rstrip())
            return ProcessResult.success(req.command, stdout="\n".join(lines) + "\n")
        if args[:2] == ["toolchain", "link"]:
            self.linked = args[3]
        elif args[:2] == ["toolchain", "remove"]:
            self.linked = None
        return ProcessResult.success(req.command)

    def _rustc(self, req):
        return ProcessResult.success(req.command, stdout=f"{self.linked or ''}\n")


def _cache(cache_root, fetcher, host=HOST) -> ToolCache:
    return ToolCache(
        cache_root,
        fetcher=fetcher,
        host=host,
        sleep=lambda _s: None,
        backoff=Backoff(max_attempts=2, base_delay=0.0, jitter=0.0),
    )


def _installer(executor, cache, **kwargs) -> ToolchainInstaller:
    kwargs.setdefault("release_url", RELEASE_URL)
    return ToolchainInstaller(executor, cache, **kwargs)


@pytest.fixture
def online_fetcher() -> FakeFetcher:
    return FakeFetcher({RELEASE_URL: _release(), **_archives()})


# ── Discovery ───────────────────────────────────────────────────


class TestFind:
    @pytest.mark.parametrize(
        "line, path",
        [
            ("wasix /home/u/.wasix/toolchains/x/rust", "/home/u/.wasix/toolchains/x/rust"),
            ("wasix (default) /opt/wasix/rust", "/opt/wasix/rust"),
            ("wasix", None),
        ],
    )
    def test_reads_verbose_listing(self, cache_root, line, path):
        executor = FakeExecutor()
        executor.set_response("rustup", ProcessResult.success(["rustup"], stdout=f"stable\n{line}\n"))
        toolchain = _installer(executor, _cache(cache_root, FakeFetcher())).find()

        assert toolchain.name == "wasix"
        assert toolchain.path == (None if path is None else Path(path))

    def test_absent(self, cache_root):
        executor = FakeExecutor()
        executor.set_response("rustup", ProcessResult.success(["rustup"], stdout="stable (default)\nwasix-old\n"))
        assert _installer(executor, _cache(cache_root, FakeFetcher())).find() is None

    def test_no_rustup(self, cache_root):
        executor = FakeExecutor()
        executor.set_missing("rustup")
        with pytest.raises(ToolchainMissing) as exc:
            _installer(executor, _cache(cache_root, FakeFetcher())).find()
        assert exc.value.exit_code == 6

    def test_rustup_failure(self, cache_root):
        executor = FakeExecutor()
        executor.set_failure("rustup", returncode=2)
        with pytest.raises(UnderlyingToolFailure):
            _installer(executor, _cache(cache_root, FakeFetcher())).find()


# ── Ensure ──────────────────────────────────────────────────────


class TestEnsure:
    def test_present_toolchain_is_not_downloaded(self, cache_root, tmp_path):
        sysroot = tmp_path / "rust"
        (sysroot / "lib" / "rustlib" / "wasm32-wasmer-wasi").mkdir(parents=True)
        executor = FakeExecutor()
        FakeRustup(executor, linked=str(sysroot))
        fetcher = FakeFetcher()

        toolchain = _installer(executor, _cache(cache_root, fetcher)).ensure(32)

        assert str(toolchain.path) == str(sysroot)
        assert fetcher.reads == [] and fetcher.downloads == []
        assert executor.calls_to("rustc")[0].env == {"RUSTUP_TOOLCHAIN": "wasix"}

    def test_offline_missing_is_an_error(self, cache_root, online_fetcher):
        executor = FakeExecutor()
        FakeRustup(executor)

        with pytest.raises(ToolchainMissing) as exc:
            _installer(executor, _cache(cache_root, online_fetcher), offline=True).ensure()

        assert "CARGO_WASIX_OFFLINE" in str(exc.value)
        assert "rustup toolchain link wasix" in str(exc.value)
        assert online_fetcher.reads == []

    def test_install_disabled(self, cache_root, online_fetcher):
        executor = FakeExecutor()
        FakeRustup(executor)
        with pytest.raises(ToolchainMissing):
            _installer(executor, _cache(cache_root, online_fetcher), install=False).ensure()
        assert online_fetcher.downloads == []

    def test_downloads_and_links_prebuilt(self, cache_root, online_fetcher):
        executor = FakeExecutor()
        rustup = FakeRustup(executor)

        toolchain = _installer(executor, _cache(cache_root, online_fetcher)).ensure(32)

        final = cache_root / "toolchains" / f"{TRIPLE}_{TAG}"
        assert toolchain.path == final / "rust"
        assert rustup.linked == str(final / "rust")
        assert online_fetcher.reads == [RELEASE_URL]
        assert sorted(online_fetcher.downloads) == sorted([RUST_URL, SYSROOT_URL])

        rustc = final / "rust" / "bin" / "rustc"
        assert os.access(rustc, os.X_OK)
        assert os.access(final / "rust" / "lib" / "rustlib" / TRIPLE / "bin" / "rust-lld", os.X_OK)
        assert toolchain.sysroot_dir(32) == final / "sysroot" / "sysroot32"
        assert (final / "sysroot" / "sysroot64" / "lib" / "wasm64-wasi" / "libc.a").is_file()
        assert not (final / "sysroot" / "wasix-libc").exists()
        assert not list(cache_root.glob(".tmp-*"))
        assert not (cache_root / ".lock.holder").exists()

        link = [r.command for r in executor.calls_to("rustup") if r.command[1:3] == ["toolchain", "link"]]
        assert link == [["rustup", "toolchain", "link", "wasix", str(final / "rust")]]

    def test_installed_toolchain_missing_target(self, cache_root, online_fetcher):
        executor = FakeExecutor()
        FakeRustup(executor)
        with pytest.raises(ToolchainMissing) as exc:
            _installer(executor, _cache(cache_root, online_fetcher)).ensure(64)
        assert "wasm64-wasmer-wasi" in str(exc.value)

    def test_release_without_host_asset(self, cache_root):
        executor = FakeExecutor()
        FakeRustup(executor)
        fetcher = FakeFetcher({RELEASE_URL: _release("wasix-libc.tar.gz"), **_archives()})

        with pytest.raises(ToolchainMissing) as exc:
            _installer(executor, _cache(cache_root, fetcher)).ensure()

        assert TRIPLE in str(exc.value)
        assert fetcher.downloads == []

    def test_unsupported_host(self, cache_root, online_fetcher):
        executor = FakeExecutor()
        FakeRustup(executor)
        with pytest.raises(ToolchainMissing) as exc:
            _installer(executor, _cache(cache_root, online_fetcher, host="linux-riscv64")).ensure()
        assert "linux-riscv64" in str(exc.value)

    def test_unreadable_release_info(self, cache_root):
        executor = FakeExecutor()
        FakeRustup(executor)
        fetcher = FakeFetcher({RELEASE_URL: b"<html>rate limited</html>"})
        with pytest.raises(ToolchainMissing):
            _installer(executor, _cache(cache_root, fetcher)).ensure()

    def test_download_failure_leaves_nothing_behind(self, cache_root):
        executor = FakeExecutor()
        rustup = FakeRustup(executor)
        fetcher = FakeFetcher({RELEASE_URL: _release(), SYSROOT_URL: _archives()[SYSROOT_URL]})

        with pytest.raises(NetworkError):
            _installer(executor, _cache(cache_root, fetcher)).ensure()

        assert rustup.linked is None
        assert not (cache_root / "toolchains").exists()
        assert not list(cache_root.glob(".tmp-*"))


class TestLink:
    def test_relinks_over_existing(self, cache_root, tmp_path):
        rust = tmp_path / "rust"
        (rust / "bin").mkdir(parents=True)
        (rust / "bin" / "rustc").write_text("")
        executor = FakeExecutor()
        rustup = FakeRustup(executor, linked="/old/rust")

        toolchain = _installer(executor, _cache(cache_root, FakeFetcher())).link(rust)

        subcommands = [r.command[1:3] for r in executor.calls_to("rustup")]
        assert subcommands[-2:] == [["toolchain", "remove"], ["toolchain", "link"]]
        assert rustup.linked == str(rust)
        assert toolchain == Toolchain("wasix", rust)

    def test_rejects_dir_without_rustc(self, cache_root, tmp_path):
        executor = FakeExecutor()
        FakeRustup(executor)
        with pytest.raises(ToolchainMissing):
            _installer(executor, _cache(cache_root, FakeFetcher())).link(tmp_path)
        assert not any(r.command[1:3] == ["toolchain", "link"] for r in executor.calls_to("rustup"))

    def test_link_failure(self, cache_root, tmp_path):
        (tmp_path / "bin").mkdir()
        (tmp_path / "bin" / "rustc").write_text("")
        executor = FakeExecutor()
        executor.set_response(
            "rustup",
            lambda req: (
                ProcessResult.success(req.command, stdout="stable\n")
                if req.command[2] == "list"
                else ProcessResult.failure(req.command, returncode=1, stderr="error: invalid toolchain")
            ),
        )
        with pytest.raises(UnderlyingToolFailure) as exc:
            _installer(executor, _cache(cache_root, FakeFetcher())).link(tmp_path)
        assert "invalid toolchain" in str(exc.value)


class TestSysrootDir:
    def test_unknown_path(self):
        assert Toolchain("wasix").sysroot_dir(32) is None

    def test_missing_dir(self, tmp_path):
        assert Toolchain("wasix", tmp_path / "rust").sysroot_dir(64) is None
