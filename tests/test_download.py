"""
Tests for download helpers, checksum verification and archive extraction.
"""

import io
import socket
import tarfile
import urllib.error
import zipfile

import pytest

from conftest import make_tar_gz, sha256
from cargo_wasix import __version__
from cargo_wasix.core.errors import ExtractionFailure, NetworkError
from cargo_wasix.core.services.tool_cache.download import (
    build_request,
    classify,
    parse_sidecar,
    verify_checksum,
)
from cargo_wasix.core.services.tool_cache.extract import extract_archive
from cargo_wasix.core.services.tool_cache.platform import host_key, is_windows


class TestBuildRequest:
    def test_user_agent(self):
        req = build_request("https://example.invalid/x", env={})
        assert req.get_header("User-agent") == f"cargo-wasix/v{__version__}"

    def test_github_token_only_for_github(self):
        env = {"GITHUB_TOKEN": "secret"}
        gh = build_request("https://github.com/WebAssembly/binaryen/releases/x.tar.gz", env=env)
        other = build_request("https://example.invalid/x", env=env)
        assert gh.get_header("Authorization") == "Bearer secret"
        assert other.get_header("Authorization") is None


class TestClassify:
    def _http(self, code):
        return urllib.error.HTTPError("https://x", code, "status", {}, None)

    @pytest.mark.parametrize("code, retryable", [(404, False), (403, False), (429, True), (503, True)])
    def test_http_status(self, code, retryable):
        assert classify(self._http(code), "https://x").retryable is retryable

    def test_transport_errors_retryable(self):
        assert classify(urllib.error.URLError("refused"), "u").retryable
        assert classify(socket.timeout("slow"), "u").retryable
        assert classify(ConnectionResetError(), "u").retryable

    def test_passthrough(self):
        err = NetworkError("x", retryable=False)
        assert classify(err, "u") is err


class TestChecksum:
    def test_verify(self, tmp_path):
        path = tmp_path / "blob"
        path.write_bytes(b"data")
        ok, actual = verify_checksum(path, sha256(b"data"))
        assert ok
        assert actual == sha256(b"data")

    def test_bare_hex_is_sha256(self, tmp_path):
        path = tmp_path / "blob"
        path.write_bytes(b"data")
        ok, _ = verify_checksum(path, sha256(b"data").split(":", 1)[1].upper())
        assert ok

    def test_mismatch(self, tmp_path):
        path = tmp_path / "blob"
        path.write_bytes(b"data")
        ok, actual = verify_checksum(path, sha256(b"other"))
        assert not ok
        assert actual == sha256(b"data")

    def test_parse_sidecar(self):
        digest = "ab" * 32
        assert parse_sidecar(f"{digest}  binaryen.tar.gz\n") == f"sha256:{digest}"

    def test_parse_sidecar_malformed(self):
        with pytest.raises(NetworkError) as exc:
            parse_sidecar("<html>Not Found</html>")
        assert not exc.value.retryable


class TestExtract:
    def test_tar_gz(self, tmp_path):
        archive = tmp_path / "a.tar.gz"
        archive.write_bytes(make_tar_gz({"pkg/bin/tool": b"x"}))
        dest = tmp_path / "out"
        dest.mkdir()
        extract_archive(archive, dest, "tar.gz")
        assert (dest / "pkg" / "bin" / "tool").read_bytes() == b"x"

    def test_zip_keeps_mode(self, tmp_path):
        archive = tmp_path / "a.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            info = zipfile.ZipInfo("bin/tool")
            info.external_attr = 0o755 << 16
            zf.writestr(info, b"x")
        dest = tmp_path / "out"
        dest.mkdir()
        extract_archive(archive, dest, "zip")
        assert (dest / "bin" / "tool").stat().st_mode & 0o777 == 0o755

    def test_symlink_escape_rejected(self, tmp_path):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            link = tarfile.TarInfo("bin/tool")
            link.type = tarfile.SYMTYPE
            link.linkname = "../../../etc/passwd"
            tar.addfile(link)
        archive = tmp_path / "a.tar.gz"
        archive.write_bytes(buf.getvalue())
        dest = tmp_path / "out"
        dest.mkdir()
        with pytest.raises(ExtractionFailure):
            extract_archive(archive, dest, "tar.gz")

    def test_corrupt_archive(self, tmp_path):
        archive = tmp_path / "a.tar.gz"
        archive.write_bytes(b"not an archive")
        dest = tmp_path / "out"
        dest.mkdir()
        with pytest.raises(ExtractionFailure):
            extract_archive(archive, dest, "tar.gz")

    def test_unknown_format(self, tmp_path):
        with pytest.raises(ExtractionFailure):
            extract_archive(tmp_path / "a.rar", tmp_path, "rar")


class TestHostKey:
    @pytest.mark.parametrize(
        "system, machine, expected",
        [
            ("Linux", "x86_64", "linux-x86_64"),
            ("Linux", "aarch64", "linux-aarch64"),
            ("Darwin", "arm64", "macos-aarch64"),
            ("Windows", "AMD64", "windows-x86_64"),
        ],
    )
    def test_normalizes(self, system, machine, expected):
        assert host_key(system, machine) == expected

    def test_is_windows(self):
        assert is_windows("windows-x86_64")
        assert not is_windows("linux-x86_64")
