"""
Process models — the execution contract for external tools.

A ``ProcessRequest`` describes a command to run; a ``ProcessResult``
is the receipt the executor hands back.  Executors NEVER raise for a
failing child: non-zero exits, timeouts and missing executables are
all captured in the result.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ProcessRequest(BaseModel):
    """A command to execute."""

    command: list[str]
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)   # overrides on top of os.environ
    capture: bool = True          # False = inherit the parent's stdio
    capture_stderr: bool = True   # only meaningful when capture is True
    timeout: float | None = None

    @property
    def program(self) -> str:
        return self.command[0] if self.command else ""

    def display(self) -> str:
        return " ".join(self.command)


class ProcessResult(BaseModel):
    """Outcome of an executed command."""

    command: list[str]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    error: str | None = None      # executor-level failure (not found, timeout)
    not_found: bool = False       # the program itself does not exist

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the command ran and exited with status 0."""
        return self.error is None and self.returncode == 0

    @property
    def failed(self) -> bool:
        return not self.ok

    @classmethod
    def success(cls, command: list[str], stdout: str = "", **kwargs: Any) -> ProcessResult:
        """Create a success result."""
        return cls(command=command, returncode=0, stdout=stdout, **kwargs)

    @classmethod
    def failure(
        cls,
        command: list[str],
        returncode: int = 1,
        stderr: str = "",
        **kwargs: Any,
    ) -> ProcessResult:
        """Create a failed-exit result."""
        return cls(command=command, returncode=returncode, stderr=stderr, **kwargs)

    @classmethod
    def missing(cls, command: list[str]) -> ProcessResult:
        """Create a result for a program that could not be found."""
        program = command[0] if command else ""
        return cls(
            command=command,
            returncode=127,
            error=f"program not found: {program}",
            not_found=True,
        )
