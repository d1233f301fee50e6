"""
Configuration loader — resolves cargo-wasix settings.

Sources, highest precedence first:

    1. Environment variables (``CARGO_WASIX_*``, ``WASM_OPT``, ...)
    2. ``wasix.yml`` found by walking up from the working directory
       (keys may be wrapped under a top-level ``wasix:`` mapping)
    3. Defaults on the ``Settings`` model

It reads YAML, validates against a Pydantic schema, and returns a
typed ``Settings`` object.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from cargo_wasix import __version__
from cargo_wasix.core.errors import ConfigError

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "wasix.yml"

DEFAULT_DATASET_URL = (
    "https://raw.githubusercontent.com/wasix-org/cargo-wasix/main/incompatible_crates/data.json"
)
DEFAULT_TOOLCHAIN_RELEASE_URL = "https://api.github.com/repos/wasix-org/rust/releases/latest"

# env var → (settings field, kind)
_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "CARGO_WASIX_CACHE": ("cache_dir", "str"),
    "CARGO_WASIX_OFFLINE": ("offline", "bool"),
    "CARGO_WASIX_NO_OPT": ("no_optimize", "bool"),
    "CARGO_WASIX_LOCK_TIMEOUT": ("lock_timeout", "float"),
    "CARGO_WASIX_TEMP_MAX_AGE": ("temp_max_age", "float"),
    "CARGO_WASIX_BINDGEN_OUT_DIR": ("bindgen_out_dir", "str"),
    "CARGO_WASIX_TOOLCHAIN_URL": ("toolchain_release_url", "str"),
    "CARGO_WASIX_DATASET_URL": ("incompatible_crates_url", "str"),
    "CARGO_TARGET_WASM32_WASIX_RUNNER": ("runner", "str"),
    "WASM_OPT": ("wasm_opt", "str"),
    "WASM_BINDGEN": ("wasm_bindgen", "str"),
    "CARGO_TARGET_DIR": ("target_dir", "str"),
}

_FALSE_VALUES = ("", "0", "false", "no", "off")


class Settings(BaseModel):
    """Resolved configuration for one invocation."""

    cache_dir: str | None = None
    offline: bool = False
    runner: str | None = None            # executor override; default is `wasmer`
    wasm_opt: str | None = None          # explicit wasm-opt binary, bypasses the cache
    wasm_bindgen: str | None = None      # explicit wasm-bindgen binary
    optimize: bool = True
    no_optimize: bool = False
    wasm_opt_flags: list[str] = Field(default_factory=list)
    tool_versions: dict[str, str] = Field(default_factory=dict)

    lock_timeout: float = 300.0
    temp_max_age: float = 600.0          # abandoned .tmp-* install dirs are swept after this
    download_attempts: int = 4
    download_timeout: float = 60.0

    incompatible_crates_url: str = DEFAULT_DATASET_URL
    dataset_max_age_days: int = 30
    check_dependencies: bool = True

    install_toolchain: bool = True       # fetch the prebuilt `wasix` toolchain when missing
    toolchain_release_url: str = DEFAULT_TOOLCHAIN_RELEASE_URL

    target_dir: str | None = None
    bindgen_out_dir: str | None = None   # wasm-bindgen JS glue; default: next to the module

    source: str | None = None            # path of the wasix.yml that was loaded

    @property
    def optimize_enabled(self) -> bool:
        return self.optimize and not self.no_optimize

    def cache_root(self) -> Path:
        """Root of the tool cache for this release of cargo-wasix."""
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return Path.home() / ".cache" / "cargo-wasix" / __version__

    def resolve_target_dir(self, project_root: Path) -> Path:
        if self.target_dir:
            return (project_root / self.target_dir).resolve()
        return (project_root / "target").resolve()


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for wasix.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to wasix.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def _read_yaml(path: Path) -> dict:
    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "wasix" key or be flat
    wrapped = data.get("wasix")
    if isinstance(wrapped, dict):
        return dict(wrapped)
    return data


def _env_overrides(env: Mapping[str, str]) -> dict:
    values: dict = {}
    for var, (field, kind) in _ENV_FIELDS.items():
        if var not in env:
            continue
        raw = env[var]
        if kind == "bool":
            values[field] = raw.strip().lower() not in _FALSE_VALUES
        elif kind == "float":
            try:
                values[field] = float(raw)
            except ValueError as e:
                raise ConfigError(f"{var} must be a number, got {raw!r}") from e
        elif raw.strip():
            values[field] = raw.strip()
    return values


def load_settings(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
    start_dir: Path | None = None,
) -> Settings:
    """Load and validate settings.

    Args:
        path: Explicit path to wasix.yml. If None, searches upward.
        env: Environment mapping (default: ``os.environ``).
        start_dir: Where the upward search begins (default: cwd).

    Returns:
        Validated Settings model.

    Raises:
        ConfigError: If an explicit file is missing, or any source is invalid.
    """
    env = os.environ if env is None else env

    if path is not None and not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    if path is None:
        path = find_config_file(start_dir)

    data: dict = _read_yaml(path) if path else {}
    data.update(_env_overrides(env))
    if path:
        data["source"] = str(path)

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid cargo-wasix configuration: {e}") from e

    logger.debug(
        "Settings: cache=%s offline=%s optimize=%s",
        settings.cache_root(),
        settings.offline,
        settings.optimize_enabled,
    )
    return settings
