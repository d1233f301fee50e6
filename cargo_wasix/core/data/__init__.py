"""
Central data registry for static catalogs.

Loads bundled catalogs from ``cargo_wasix/core/data/catalogs/`` once at
first access and caches them for the lifetime of the instance.

Usage::

    from cargo_wasix.core.data import DataRegistry

    registry = DataRegistry()
    raw = registry.incompatible_crates   # dict with "schema_version" and "crates"
"""

from __future__ import annotations

import json
import logging
from functools import cached_property
from pathlib import Path

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).parent


def _load_json(relative_path: str) -> list | dict:
    """Load a JSON file relative to the data directory."""
    path = _DATA_DIR / relative_path
    if not path.exists():
        logger.warning("Data file not found: %s", path)
        return {}
    with open(path, encoding="utf-8") as f:
        return json.load(f)


class DataRegistry:
    """Registry for the catalogs shipped inside the package."""

    @cached_property
    def incompatible_crates(self) -> list | dict:
        """Bundled incompatible-crate dataset (offline fallback)."""
        data = _load_json("catalogs/incompatible_crates.json")
        logger.debug("Loaded bundled incompatible-crate dataset")
        return data

    @property
    def incompatible_crates_path(self) -> Path:
        return _DATA_DIR / "catalogs" / "incompatible_crates.json"
