"""
Executor base — the protocol contract between the core and external tools.

The compiler, the executor, ``rustup``, ``wasm-opt`` and ``wasm-bindgen``
are all reached through this interface, never through ``subprocess``
directly, so tests can substitute a fake without touching a real
toolchain.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod

from cargo_wasix.core.models.process import ProcessRequest, ProcessResult


class ProcessExecutor(ABC):
    """Abstract base class for process executors.

    Executors run a command and return a result.
    They NEVER raise for a failing child — failures are captured in the
    ProcessResult (non-zero ``returncode``, ``error``, ``not_found``).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The executor identifier (e.g., 'subprocess', 'fake')."""

    @abstractmethod
    def which(self, program: str) -> str | None:
        """Resolve a program on PATH (or as a path); None if absent."""

    @abstractmethod
    def execute(self, request: ProcessRequest) -> ProcessResult:
        """Run the command and return its result.

        MUST never raise for child failures.
        """

    def run(
        self,
        command: list[str],
        *,
        cwd: str | os.PathLike | None = None,
        env: dict[str, str] | None = None,
        capture: bool = True,
        capture_stderr: bool = True,
        timeout: float | None = None,
    ) -> ProcessResult:
        """Convenience wrapper building the ``ProcessRequest``."""
        return self.execute(
            ProcessRequest(
                command=command,
                cwd=os.fspath(cwd) if cwd is not None else None,
                env=env or {},
                capture=capture,
                capture_stderr=capture_stderr,
                timeout=timeout,
            )
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
