"""
Host platform detection — maps the running machine to a cache host key.
"""

from __future__ import annotations

import platform as _platform

_SYSTEMS = {
    "linux": "linux",
    "darwin": "macos",
    "windows": "windows",
}

_MACHINES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
}

HOST_KEYS = (
    "linux-x86_64",
    "linux-aarch64",
    "macos-x86_64",
    "macos-aarch64",
    "windows-x86_64",
)


def host_key(system: str | None = None, machine: str | None = None) -> str:
    """Return the host key, e.g. ``linux-x86_64`` or ``macos-aarch64``.

    Unknown combinations come back as ``<system>-<machine>`` lowercased;
    no tool spec lists them, so lookups for them fail as unavailable.
    """
    system = (system if system is not None else _platform.system()).lower()
    machine = (machine if machine is not None else _platform.machine()).lower()
    return f"{_SYSTEMS.get(system, system)}-{_MACHINES.get(machine, machine)}"


def is_windows(host: str) -> bool:
    return host.startswith("windows")
