"""
Tool cache — download, verify and install auxiliary binaries on demand.
"""

from cargo_wasix.core.services.tool_cache.cache import (
    METADATA_FILE,
    ToolCache,
    cache_from_settings,
)
from cargo_wasix.core.services.tool_cache.lock import LOCK_FILE, CacheLock
from cargo_wasix.core.services.tool_cache.platform import host_key

__all__ = [
    "LOCK_FILE",
    "METADATA_FILE",
    "CacheLock",
    "ToolCache",
    "cache_from_settings",
    "host_key",
]
