"""
Subprocess executor — run real commands.

This is the single place where ``subprocess.run`` is called.  Captured
runs collect stdout/stderr as text; non-captured runs connect the
child's stdio directly to ours (used for the compiler's diagnostics
and for the runner).
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time

from cargo_wasix.adapters.base import ProcessExecutor
from cargo_wasix.core.models.process import ProcessRequest, ProcessResult

logger = logging.getLogger(__name__)


class SubprocessExecutor(ProcessExecutor):
    """Execute commands with :mod:`subprocess`."""

    @property
    def name(self) -> str:
        return "subprocess"

    def which(self, program: str) -> str | None:
        if os.sep in program or (os.altsep and os.altsep in program):
            return program if os.path.isfile(program) else None
        return shutil.which(program)

    def execute(self, request: ProcessRequest) -> ProcessResult:
        command = request.command
        env = None
        if request.env:
            env = os.environ.copy()
            env.update(request.env)

        logger.debug("Executing: %s (cwd=%s)", request.display(), request.cwd)
        start = time.monotonic()

        try:
            if request.capture:
                result = subprocess.run(
                    command,
                    cwd=request.cwd,
                    env=env,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE if request.capture_stderr else None,
                    text=True,
                    errors="replace",
                    timeout=request.timeout,
                )
            else:
                result = subprocess.run(
                    command,
                    cwd=request.cwd,
                    env=env,
                    timeout=request.timeout,
                )
        except FileNotFoundError:
            return ProcessResult.missing(command)
        except PermissionError as e:
            return ProcessResult(
                command=command,
                returncode=126,
                error=f"cannot execute {command[0]}: {e}",
            )
        except subprocess.TimeoutExpired:
            return ProcessResult(
                command=command,
                returncode=124,
                error=f"command timed out after {request.timeout}s",
            )
        except OSError as e:
            return ProcessResult(
                command=command,
                returncode=1,
                error=f"command execution error: {e}",
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug("%s exited with %d after %dms", command[0], result.returncode, elapsed_ms)
        return ProcessResult(
            command=command,
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            duration_ms=elapsed_ms,
        )
