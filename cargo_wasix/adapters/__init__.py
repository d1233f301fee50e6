"""Adapters — bindings to external processes.

Public re-exports for convenient access.
"""

from cargo_wasix.adapters.base import ProcessExecutor
from cargo_wasix.adapters.mock import FakeExecutor
from cargo_wasix.adapters.shell.command import SubprocessExecutor

__all__ = [
    "FakeExecutor",
    "ProcessExecutor",
    "SubprocessExecutor",
]
