"""
Artifact locator — where the compiler put a module.

Paths are a pure function of ``(target, profile, bit_width, test, example)``
and the target directory the locator was built with::

    <target_dir>/wasm{bit_width}-wasmer-wasi/<profile>/[deps/|examples/]<target>.wasm
"""

from __future__ import annotations

import logging
from pathlib import Path

from cargo_wasix.core.errors import ArtifactNotFound
from cargo_wasix.core.models.artifact import BuildArtifact, triple_for

logger = logging.getLogger(__name__)


class ArtifactLocator:
    """Resolves compiled modules under one target directory."""

    def __init__(self, target_dir: Path):
        self.target_dir = Path(target_dir)

    def profile_dir(self, profile: str, bit_width: int) -> Path:
        return self.target_dir / triple_for(bit_width) / profile

    def expected_path(
        self, target: str, profile: str, bit_width: int, test: bool = False, example: bool = False
    ) -> Path:
        """Where the module would be; does not touch the filesystem."""
        base = self.profile_dir(profile, bit_width)
        if test:
            base = base / "deps"
        elif example:
            base = base / "examples"
        return base / f"{target}.wasm"

    def locate(
        self, target: str, profile: str, bit_width: int, test: bool = False, example: bool = False
    ) -> BuildArtifact:
        """Find the module on disk.

        Raises:
            ArtifactNotFound: If the compiler did not produce it.
        """
        path = self.expected_path(target, profile, bit_width, test, example)
        if not path.is_file():
            raise ArtifactNotFound(
                f"expected {triple_for(bit_width)} artifact `{target}` ({profile}) at {path}, "
                "but it does not exist; did the build succeed?"
            )
        logger.debug("Located %s", path)
        return BuildArtifact(
            path=str(path),
            target=target,
            profile=profile,
            bit_width=bit_width,
            test=test,
            example=example,
        )
