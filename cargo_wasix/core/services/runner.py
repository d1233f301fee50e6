"""
Runner — executes a processed module with the WASIX executor.

Runs ``<runtime> -- <artifact> <args...>`` with the parent's stdio and
hands back the child's exit code (128 + N when signal N killed it).
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from cargo_wasix.adapters.base import ProcessExecutor
from cargo_wasix.core.errors import RuntimeNotFound, exit_status

logger = logging.getLogger(__name__)

DEFAULT_RUNTIME = "wasmer"
RUNNER_ENV = "CARGO_TARGET_WASM32_WASIX_RUNNER"

_INSTALL_HINT = "you can also install through a shell:\n\n\tcurl https://get.wasmer.io -sSfL | sh\n"


def resolve_runtime(
    executor: ProcessExecutor,
    override: str | None = None,
    env: Mapping[str, str] | None = None,
) -> str:
    """Pick the executor binary, failing early with install guidance.

    Args:
        executor: Used for ``PATH`` lookups.
        override: Explicit runtime (config ``runner``); beats the env var.
        env: Environment holding ``CARGO_TARGET_WASM32_WASIX_RUNNER``.

    Raises:
        RuntimeNotFound: The override or the default ``wasmer`` is absent.
    """
    env = os.environ if env is None else env
    override = override or env.get(RUNNER_ENV, "").strip() or None
    if override:
        if Path(override).exists() or executor.which(override):
            return override
        raise RuntimeNotFound(
            f"failed to find `{override}` (specified by ${RUNNER_ENV}) on the filesystem "
            f"or in $PATH, you'll want to fix the path or unset the ${RUNNER_ENV} "
            "environment variable before running this command"
        )
    if executor.which(DEFAULT_RUNTIME):
        return DEFAULT_RUNTIME
    raise RuntimeNotFound(
        f"failed to find `{DEFAULT_RUNTIME}` in $PATH, you'll want to install "
        f"`{DEFAULT_RUNTIME}` before running this command\n{_INSTALL_HINT}"
    )


class Runner:
    """Runs modules with one runtime."""

    def __init__(self, executor: ProcessExecutor, runtime: str = DEFAULT_RUNTIME):
        self.executor = executor
        self.runtime = runtime

    def command(self, artifact: Path | str, args: list[str]) -> list[str]:
        return [self.runtime, "--", str(artifact), *args]

    def run(self, artifact: Path | str, args: list[str] | None = None) -> int:
        """Run to completion; returns the child's exit code.

        Raises:
            RuntimeNotFound: The runtime vanished between resolution and launch.
        """
        command = self.command(artifact, list(args or []))
        logger.info("Running `%s`", " ".join(command[2:]))
        result = self.executor.run(command, capture=False)
        if result.not_found:
            raise RuntimeNotFound(f"failed to execute `{self.runtime}`: {result.error}")
        if result.returncode < 0:
            logger.warning("`%s` was killed by signal %d", self.runtime, -result.returncode)
        return exit_status(result.returncode)
