"""
Archive extraction with path-traversal protection.

Supports ``tar.gz``, ``tar.xz`` and ``zip``.  Any member that would land
outside the destination (absolute path, ``..`` component, or a link
pointing outside) aborts the whole extraction.
"""

from __future__ import annotations

import logging
import os
import tarfile
import zipfile
from pathlib import Path, PurePosixPath

from cargo_wasix.core.errors import ExtractionFailure

logger = logging.getLogger(__name__)

_TAR_MODES = {
    "tar.gz": "r:gz",
    "tgz": "r:gz",
    "tar.xz": "r:xz",
    "tar": "r:",
}


def _check_member(name: str, dest: Path) -> None:
    pure = PurePosixPath(name.replace("\\", "/"))
    if pure.is_absolute() or ".." in pure.parts or (pure.parts and ":" in pure.parts[0]):
        raise ExtractionFailure(f"archive member escapes destination: {name!r}")
    target = (dest / pure).resolve()
    if target != dest and dest not in target.parents:
        raise ExtractionFailure(f"archive member escapes destination: {name!r}")


def _check_link(member: tarfile.TarInfo, dest: Path) -> None:
    if member.issym():
        base = (dest / PurePosixPath(member.name)).parent
        target = (base / member.linkname).resolve()
    elif member.islnk():
        target = (dest / member.linkname).resolve()
    else:
        return
    if target != dest and dest not in target.parents:
        raise ExtractionFailure(
            f"archive link {member.name!r} points outside destination: {member.linkname!r}"
        )


def _extract_tar(archive: Path, dest: Path, mode: str) -> None:
    with tarfile.open(archive, mode) as tar:
        members = tar.getmembers()
        for member in members:
            _check_member(member.name, dest)
            _check_link(member, dest)
            if member.isdev():
                raise ExtractionFailure(f"archive contains a device file: {member.name!r}")
        tar.extractall(dest, members=members, filter="tar")


def _extract_zip(archive: Path, dest: Path) -> None:
    with zipfile.ZipFile(archive) as zf:
        infos = zf.infolist()
        for info in infos:
            _check_member(info.filename, dest)
        for info in infos:
            path = Path(zf.extract(info, dest))
            # Restore the unix mode bits zip stores in the upper half.
            mode = (info.external_attr >> 16) & 0o777
            if mode and not info.is_dir():
                os.chmod(path, mode)


def extract_archive(archive: Path, dest: Path, archive_format: str) -> None:
    """Unpack ``archive`` into the (existing, empty) directory ``dest``.

    Raises:
        ExtractionFailure: Unsupported format, corrupt archive or unsafe member.
    """
    dest = dest.resolve()
    logger.debug("Extracting %s (%s) → %s", archive.name, archive_format, dest)
    try:
        if archive_format == "zip":
            _extract_zip(archive, dest)
        elif archive_format in _TAR_MODES:
            _extract_tar(archive, dest, _TAR_MODES[archive_format])
        else:
            raise ExtractionFailure(f"unsupported archive format: {archive_format!r}")
    except ExtractionFailure:
        raise
    except (tarfile.TarError, zipfile.BadZipFile, EOFError, OSError) as e:
        raise ExtractionFailure(f"cannot extract {archive.name}: {e}") from e
