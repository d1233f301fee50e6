"""
Incompatible-crate dataset — cached download with a bundled fallback.

Resolution order:

    1. ``<cache root>/incompatible_crates.json`` if younger than the max age
    2. download from the configured URL (cached copy rewritten atomically)
    3. the dataset bundled with the package

Offline mode skips step 2.  A download or parse failure is never fatal:
it logs a warning and falls through to the next source.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError

from cargo_wasix.core.data import DataRegistry
from cargo_wasix.core.errors import NetworkError
from cargo_wasix.core.models.compat import IncompatibleCrateEntry
from cargo_wasix.core.persistence.atomic import atomic_write_json, read_json

logger = logging.getLogger(__name__)

DATASET_FILE = "incompatible_crates.json"
SCHEMA_VERSION = 1


def parse_dataset(raw: object) -> list[IncompatibleCrateEntry]:
    """Validate a dataset document.

    Accepts ``{"schema_version": N, "crates": [...]}`` or a bare list.
    Entries that fail validation are skipped with a warning.

    Raises:
        ValueError: If the document has neither shape.
    """
    if isinstance(raw, dict):
        version = raw.get("schema_version", SCHEMA_VERSION)
        if isinstance(version, int) and version > SCHEMA_VERSION:
            logger.debug("Dataset schema %s is newer than %s; reading known fields", version, SCHEMA_VERSION)
        items = raw.get("crates")
    else:
        items = raw
    if not isinstance(items, list):
        raise ValueError("incompatible-crate dataset must be a list or have a 'crates' list")

    entries: list[IncompatibleCrateEntry] = []
    for item in items:
        try:
            entries.append(IncompatibleCrateEntry.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping invalid dataset entry %r: %s", item, e)
    return entries


class DatasetLoader:
    """Loads the dataset for one invocation.

    Args:
        cache_root: Where the cached copy lives.
        url: Remote dataset location.
        fetcher: Object with ``read_text(url) -> str``.
        offline: Never touch the network.
        max_age_days: Age after which the cached copy is refreshed.
        clock: Injectable wall clock, for tests.
    """

    def __init__(
        self,
        cache_root: Path,
        url: str,
        fetcher,
        *,
        offline: bool = False,
        max_age_days: int = 30,
        clock: Callable[[], float] = time.time,
        registry: DataRegistry | None = None,
    ):
        self.cache_path = Path(cache_root) / DATASET_FILE
        self.url = url
        self.fetcher = fetcher
        self.offline = offline
        self.max_age = max_age_days * 24 * 60 * 60
        self._clock = clock
        self._registry = registry or DataRegistry()

    def _cached(self) -> list[IncompatibleCrateEntry] | None:
        try:
            age = self._clock() - self.cache_path.stat().st_mtime
        except FileNotFoundError:
            return None
        if age >= self.max_age:
            logger.debug("Cached dataset is %.0f days old; refreshing", age / 86400)
            return None
        raw = read_json(self.cache_path)
        if raw is None:
            return None
        try:
            return parse_dataset(raw)
        except ValueError as e:
            logger.warning("Ignoring cached dataset %s: %s", self.cache_path, e)
            return None

    def _download(self) -> list[IncompatibleCrateEntry] | None:
        logger.info("Downloading known incompatible crates list")
        logger.debug("GET %s", self.url)
        try:
            raw = json.loads(self.fetcher.read_text(self.url))
            entries = parse_dataset(raw)
        except (NetworkError, ValueError) as e:
            logger.warning("Could not refresh incompatible crates list: %s", e)
            return None
        try:
            atomic_write_json(self.cache_path, raw)
        except OSError as e:
            logger.warning("Could not cache incompatible crates list at %s: %s", self.cache_path, e)
        return entries

    def _bundled(self) -> list[IncompatibleCrateEntry]:
        logger.warning("Using the bundled incompatible crates list; it may be outdated")
        return parse_dataset(self._registry.incompatible_crates)

    def load(self) -> list[IncompatibleCrateEntry]:
        entries = self._cached()
        if entries is not None:
            return entries
        if not self.offline:
            entries = self._download()
            if entries is not None:
                return entries
        return self._bundled()
