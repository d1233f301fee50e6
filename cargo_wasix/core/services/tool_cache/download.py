"""
L4 Execution — Download and checksum verification.

Streams archives to disk with ``urllib.request`` and checks their
integrity.  Failures are raised as ``NetworkError`` with ``retryable``
set for transient conditions (connection errors, timeouts, HTTP 408,
429 and 5xx) so the caller's backoff policy can decide what to retry.
Proxies come from the standard ``*_proxy`` environment variables,
which ``urllib`` honours by default.
"""

from __future__ import annotations

import hashlib
import logging
import os
import socket
import urllib.error
import urllib.request
from collections.abc import Callable, Mapping
from pathlib import Path
from urllib.parse import urlparse

from cargo_wasix import __version__
from cargo_wasix.core.errors import NetworkError

logger = logging.getLogger(__name__)

USER_AGENT = f"cargo-wasix/v{__version__}"

_CHUNK = 64 * 1024
_RETRYABLE_STATUS = {408, 429}
_GITHUB_HOSTS = ("github.com", "api.github.com", "objects.githubusercontent.com")


def _is_github(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return host in _GITHUB_HOSTS or host.endswith(".githubusercontent.com")


def build_request(url: str, env: Mapping[str, str] | None = None) -> urllib.request.Request:
    """Build a request with our user agent and, for GitHub, a bearer token."""
    env = os.environ if env is None else env
    headers = {"User-Agent": USER_AGENT}
    token = env.get("GITHUB_TOKEN", "").strip()
    if token and _is_github(url):
        headers["Authorization"] = f"Bearer {token}"
    return urllib.request.Request(url, headers=headers)


def classify(exc: BaseException, url: str) -> NetworkError:
    """Turn a urllib/socket failure into a ``NetworkError``."""
    if isinstance(exc, NetworkError):
        return exc
    if isinstance(exc, urllib.error.HTTPError):
        retryable = exc.code in _RETRYABLE_STATUS or exc.code >= 500
        return NetworkError(
            f"HTTP {exc.code} {exc.reason} while fetching {url}",
            url=url,
            retryable=retryable,
        )
    if isinstance(exc, urllib.error.URLError):
        return NetworkError(f"cannot reach {url}: {exc.reason}", url=url, retryable=True)
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return NetworkError(f"timed out fetching {url}", url=url, retryable=True)
    if isinstance(exc, (ConnectionError, OSError)):
        return NetworkError(f"connection error fetching {url}: {exc}", url=url, retryable=True)
    return NetworkError(f"failed to fetch {url}: {exc}", url=url, retryable=False)


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, NetworkError) and exc.retryable


class HttpFetcher:
    """Fetches URLs over HTTP(S).

    Args:
        timeout: Socket timeout per request, in seconds.
        env: Environment used for the ``GITHUB_TOKEN`` lookup.
    """

    def __init__(self, timeout: float = 60.0, env: Mapping[str, str] | None = None):
        self.timeout = timeout
        self.env = env

    def download(
        self,
        url: str,
        dest: Path,
        *,
        on_chunk: Callable[[int], None] | None = None,
    ) -> int:
        """Stream ``url`` into ``dest``; returns the number of bytes written.

        Raises:
            NetworkError: On any transport or HTTP failure.
        """
        logger.info("Downloading %s", url)
        written = 0
        try:
            with urllib.request.urlopen(build_request(url, self.env), timeout=self.timeout) as resp:
                total = int(resp.headers.get("Content-Length") or 0)
                next_report = 25
                with open(dest, "wb") as f:
                    for chunk in iter(lambda: resp.read(_CHUNK), b""):
                        f.write(chunk)
                        written += len(chunk)
                        if on_chunk is not None:
                            on_chunk(written)
                        if total and written * 100 // total >= next_report:
                            logger.debug("  %s: %d%% of %d bytes", dest.name, next_report, total)
                            next_report += 25
        except Exception as e:
            raise classify(e, url) from e
        logger.debug("Downloaded %d bytes → %s", written, dest)
        return written

    def read_text(self, url: str) -> str:
        """Fetch a small text document (checksum sidecars, datasets)."""
        try:
            with urllib.request.urlopen(build_request(url, self.env), timeout=self.timeout) as resp:
                return resp.read().decode("utf-8")
        except Exception as e:
            raise classify(e, url) from e


# ── Checksums ───────────────────────────────────────────────────


def file_digest(path: Path, algo: str = "sha256") -> str:
    """Hex digest of a file, read in chunks."""
    h = hashlib.new(algo)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def verify_checksum(path: Path, expected: str) -> tuple[bool, str]:
    """Verify file checksum.  Format: ``algo:hex`` (bare hex means sha256).

    Returns:
        ``(matches, actual)`` where ``actual`` uses the same ``algo:hex`` form.
    """
    algo, _, expected_hash = expected.partition(":")
    if not expected_hash:
        algo, expected_hash = "sha256", expected
    actual = file_digest(path, algo)
    return actual == expected_hash.strip().lower(), f"{algo}:{actual}"


def parse_sidecar(text: str) -> str:
    """Parse a ``.sha256`` sidecar (``<hex>  <filename>``) into ``sha256:<hex>``.

    Raises:
        NetworkError: If the sidecar does not start with a sha256 digest.
    """
    token = text.strip().split()[0] if text.strip() else ""
    if len(token) != 64 or any(c not in "0123456789abcdefABCDEF" for c in token):
        raise NetworkError(f"malformed checksum file: {text[:80]!r}", retryable=False)
    return f"sha256:{token.lower()}"
