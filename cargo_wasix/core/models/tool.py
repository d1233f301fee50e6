"""
Tool models — what an auxiliary binary is, and where it was installed.

``ToolSpec`` is defined in code (see ``core/data/tools.py``) and never
mutated; ``CachedTool`` is the record written next to a successful
install and read back by cache lookups.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from cargo_wasix.core.domain.semver import Version, VersionReq


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ToolSpec(BaseModel):
    """How to obtain one version of an auxiliary tool.

    ``url_template``, ``executable`` and ``checksum_url_template`` accept
    ``{version}``, ``{platform}`` and ``{exe}`` placeholders.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    constraint: str = ""                       # empty = exactly ``version``
    url_template: str
    platforms: dict[str, str] = Field(default_factory=dict)   # host key → release name
    archive_format: str = "tar.gz"             # tar.gz, tar.xz, zip
    executable: str                            # path inside the extracted archive
    checksums: dict[str, str] = Field(default_factory=dict)   # host key → "sha256:<hex>"
    checksum_url_template: str | None = None

    @property
    def requirement(self) -> VersionReq:
        return VersionReq.parse(self.constraint) if self.constraint else VersionReq.exact(self.version)

    def release_platform(self, host: str) -> str | None:
        return self.platforms.get(host)

    def _render(self, template: str, host: str) -> str:
        exe = ".exe" if host.startswith("windows") else ""
        return template.format(
            version=self.version,
            platform=self.platforms.get(host, host),
            exe=exe,
        )

    def url_for(self, host: str) -> str:
        return self._render(self.url_template, host)

    def checksum_url_for(self, host: str) -> str | None:
        if not self.checksum_url_template:
            return None
        return self._render(self.checksum_url_template, host)

    def executable_for(self, host: str) -> str:
        return self._render(self.executable, host)

    def slot_name(self, host: str) -> str:
        """Directory name of this tool's cache slot."""
        return f"{self.name}-{host}-{self.version}"

    def with_version(self, version: str) -> ToolSpec:
        """Same tool pinned to another exact version."""
        return self.model_copy(update={"version": version, "constraint": f"={version}"})


class CachedTool(BaseModel):
    """A complete, installed tool inside the cache root."""

    name: str
    version: str
    platform: str
    install_dir: str
    executable: str                            # relative to install_dir
    installed_at: str = Field(default_factory=_now_iso)

    @property
    def executable_path(self) -> Path:
        return Path(self.install_dir) / self.executable

    def satisfies(self, spec: ToolSpec) -> bool:
        """Whether this install is still acceptable for ``spec``."""
        try:
            return spec.requirement.matches(Version.coerce(self.version))
        except ValueError:
            return self.version == spec.version
