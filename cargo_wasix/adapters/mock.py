"""
Fake executor — test double for every external process.

By default every command succeeds with empty output.  Responses can be
configured per program (the basename of ``command[0]``) as a fixed
result or as a callable that receives the request, which lets a fake
``wasm-opt`` actually write its ``-o`` output.
"""

from __future__ import annotations

import os
from collections.abc import Callable

from cargo_wasix.adapters.base import ProcessExecutor
from cargo_wasix.core.models.process import ProcessRequest, ProcessResult

Responder = Callable[[ProcessRequest], ProcessResult]


class FakeExecutor(ProcessExecutor):
    """Universal fake executor for testing."""

    def __init__(self, available: set[str] | None = None):
        self._available = available      # None = every program exists
        self._responses: dict[str, ProcessResult | Responder] = {}
        self._call_log: list[ProcessRequest] = []

    @property
    def name(self) -> str:
        return "fake"

    @property
    def call_log(self) -> list[ProcessRequest]:
        """All requests this fake has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def calls_to(self, program: str) -> list[ProcessRequest]:
        return [r for r in self._call_log if _key(r.program) == program]

    def which(self, program: str) -> str | None:
        if self._available is None or _key(program) in self._available:
            return program
        return None

    def set_response(self, program: str, response: ProcessResult | Responder) -> None:
        """Set the result (or responder) for a program."""
        self._responses[program] = response

    def set_failure(self, program: str, returncode: int = 1, stderr: str = "fake failure") -> None:
        """Configure a program to exit non-zero."""
        self._responses[program] = lambda req: ProcessResult.failure(
            req.command, returncode=returncode, stderr=stderr
        )

    def set_missing(self, program: str) -> None:
        """Configure a program to be absent."""
        self._responses[program] = lambda req: ProcessResult.missing(req.command)

    def reset(self) -> None:
        self._call_log.clear()

    def execute(self, request: ProcessRequest) -> ProcessResult:
        self._call_log.append(request)
        response = self._responses.get(_key(request.program))
        if response is None:
            return ProcessResult.success(request.command)
        if callable(response):
            return response(request)
        return response


def _key(program: str) -> str:
    return os.path.basename(program)
