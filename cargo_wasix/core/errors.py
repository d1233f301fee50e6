"""
Error taxonomy — every failure the core can surface to the CLI.

Each error carries the process exit code it maps to, so the entry point
can turn any ``WasixError`` into one message and one exit status:

    0   success
    1   generic failure (config, unexpected)
    3   tool cache: network, checksum, extraction, lock, unavailable tool
    4   incompatible crate blocking the build
    5   post-processing stage failure
    6   missing artifact, toolchain or runtime
    N   the wrapped compiler/executor's own exit code
"""

from __future__ import annotations

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_TOOL_CACHE = 3
EXIT_INCOMPATIBLE = 4
EXIT_POST_PROCESS = 5
EXIT_MISSING = 6


def exit_status(returncode: int) -> int:
    """Shell-style status for a child's return code; a signal N becomes 128 + N."""
    return 128 - returncode if returncode < 0 else returncode


class WasixError(Exception):
    """Base class for all errors raised by the core."""

    exit_code: int = EXIT_FAILURE


class ConfigError(WasixError):
    """Raised when configuration is invalid or unreadable."""


# ── Tool cache ──────────────────────────────────────────────────


class ToolCacheError(WasixError):
    """Any failure while acquiring or managing cached tools."""

    exit_code = EXIT_TOOL_CACHE


class NetworkError(ToolCacheError):
    """A download failed. ``retryable`` marks transient failures."""

    def __init__(self, message: str, *, url: str = "", retryable: bool = True):
        super().__init__(message)
        self.url = url
        self.retryable = retryable


class ChecksumMismatch(ToolCacheError):
    """Downloaded archive does not match its expected digest."""

    def __init__(self, tool: str, version: str, expected: str, actual: str):
        super().__init__(
            f"checksum mismatch for {tool} {version}: "
            f"expected {expected}, got {actual}; the download was discarded"
        )
        self.tool = tool
        self.version = version
        self.expected = expected
        self.actual = actual


class ExtractionFailure(ToolCacheError):
    """An archive could not be unpacked or has an unexpected layout."""


class LockTimeout(ToolCacheError):
    """The cache lock could not be acquired within the bounded wait."""

    def __init__(self, path: str, timeout: float, holder: dict | None = None):
        message = f"timed out after {timeout:.0f}s waiting for cache lock {path}"
        if holder:
            message += (
                f" (held by pid {holder.get('pid', '?')} on "
                f"{holder.get('host', '?')} since {holder.get('acquired_at', '?')})"
            )
        message += "; if no other cargo-wasix is running, run `cargo wasix self clear-cache`"
        super().__init__(message)
        self.path = path
        self.timeout = timeout
        self.holder = holder or {}


class ToolUnavailable(ToolCacheError):
    """No prebuilt binary of a tool exists for this host."""


# ── Compatibility ───────────────────────────────────────────────


class IncompatibleCrateBlocking(WasixError):
    """A dependency is known not to work on WASIX; the build must not start."""

    exit_code = EXIT_INCOMPATIBLE

    def __init__(self, message: str, diagnostics: list | None = None):
        super().__init__(message)
        self.diagnostics = diagnostics or []


# ── Pipeline ────────────────────────────────────────────────────


class MissingTool(WasixError):
    """A post-processing stage could not find the tool it needs."""

    exit_code = EXIT_POST_PROCESS

    def __init__(self, tool: str, detail: str = ""):
        super().__init__(f"tool `{tool}` is not available{': ' + detail if detail else ''}")
        self.tool = tool


class PostProcessStageFailure(WasixError):
    """A post-processing stage failed; the artifact keeps its last good state."""

    exit_code = EXIT_POST_PROCESS

    def __init__(self, stage: str, artifact: str, cause: str):
        super().__init__(f"failed to process wasm at `{artifact}` (stage `{stage}`):\n    {cause}")
        self.stage = stage
        self.artifact = artifact
        self.cause = cause


# ── Missing things ──────────────────────────────────────────────


class ArtifactNotFound(WasixError):
    """The compiler did not produce the module where it was expected."""

    exit_code = EXIT_MISSING


class ToolchainMissing(WasixError):
    """The ``wasix`` rustup toolchain is not installed."""

    exit_code = EXIT_MISSING


class RuntimeNotFound(WasixError):
    """The executor used to run modules cannot be found."""

    exit_code = EXIT_MISSING


# ── Wrapped tools ───────────────────────────────────────────────


class UnderlyingToolFailure(WasixError):
    """The compiler or executor failed; its exit code is passed through.

    ``hidden`` marks a "normal" exit (code below 128, nothing captured):
    the child already printed everything relevant, so the entry point
    exits silently with ``returncode``.
    """

    def __init__(
        self,
        command: list[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
    ):
        status = f"killed by signal {-returncode}" if returncode < 0 else f"exit code {returncode}"
        message = f"failed to execute {' '.join(command)}\n    status: {status}"
        if stdout:
            message += "\n    stdout:\n        " + stdout.strip().replace("\n", "\n        ")
        if stderr:
            message += "\n    stderr:\n        " + stderr.strip().replace("\n", "\n        ")
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return exit_status(self.returncode) if self.returncode else EXIT_FAILURE

    @property
    def hidden(self) -> bool:
        return 0 <= self.returncode < 128 and not self.stdout and not self.stderr
