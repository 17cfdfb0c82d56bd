"""Deterministic tarball creation, unpacking and content hashing."""

from __future__ import annotations

import gzip
import os
import stat
import tarfile
import tempfile
import zipfile
from pathlib import Path

from binsmith.errors import ValidationError
from binsmith.fetch.http import sha256_file
from binsmith.models import ArtifactRecord
from binsmith.platforms import Platform


def tarball_name(output_base: str, version: str, platform: Platform) -> str:
    return f"{output_base}.v{version}.{platform.triplet}.tar.gz"


def package(
    prefix: str | Path,
    output_base: str | Path,
    version: str,
    platform: Platform,
) -> ArtifactRecord:
    """Archive ``prefix`` into ``{output_base}.v{version}.{triplet}.tar.gz`` and hash it."""
    base = Path(output_base)
    tarball = base.parent / tarball_name(base.name, version, platform)
    archive_directory(prefix, tarball)
    return ArtifactRecord(file_name=tarball.name, sha256=sha256_file(tarball))


def archive_directory(source: str | Path, destination: str | Path) -> Path:
    """Write a byte-for-byte reproducible ``.tar.gz`` of ``source``.

    Entries are sorted and ownership, timestamps and permission bits are
    normalised so that identical trees always yield identical bytes. Sockets
    are left out. An existing file at ``destination`` is replaced atomically.
    """
    root = Path(source)
    if not root.is_dir():
        raise ValidationError(
            "Only directories can be archived.",
            context={"operation": "archive", "path": str(root)},
        )
    target = Path(destination)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".part", dir=target.parent)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as raw:
            with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as compressed:
                with tarfile.open(fileobj=compressed, mode="w", format=tarfile.GNU_FORMAT) as tar:
                    for relative in _sorted_entries(root):
                        _add_entry(tar, root / relative, relative)
        os.replace(temp_path, target)
    finally:
        temp_path.unlink(missing_ok=True)
    return target


def unpack(archive: str | Path, destination: str | Path) -> list[str]:
    """Extract an archive and return the relative paths of its non-directory members."""
    source = Path(archive)
    target = Path(destination)
    target.mkdir(parents=True, exist_ok=True)
    if source.name.endswith(".zip"):
        with zipfile.ZipFile(source) as bundle:
            bundle.extractall(target)
            return sorted(name for name in bundle.namelist() if not name.endswith("/"))
    try:
        with tarfile.open(source, mode="r:*") as tar:
            members = [member for member in tar.getmembers() if not member.isdir()]
            tar.extractall(target, filter="data")
    except tarfile.TarError as exc:
        raise ValidationError(
            "Archive could not be unpacked.",
            hint="Ensure the source is a tar or zip archive.",
            context={"operation": "unpack", "path": str(source), "reason": str(exc)},
        ) from exc
    return sorted(os.path.normpath(member.name) for member in members)


def _sorted_entries(root: Path) -> list[str]:
    entries: list[str] = []
    for current, dirnames, filenames in os.walk(root):
        dirnames.sort()
        base = Path(current).relative_to(root)
        for name in dirnames:
            entries.append((base / name).as_posix())
        for name in filenames:
            entries.append((base / name).as_posix())
    return sorted(entries)


def _add_entry(tar: tarfile.TarFile, path: Path, arcname: str) -> None:
    info = tar.gettarinfo(str(path), arcname=arcname)
    if info is None:
        # Sockets have no tar representation.
        return
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    if info.isdir():
        info.mode = 0o755
    elif info.isreg():
        info.mode = 0o755 if info.mode & stat.S_IXUSR else 0o644
    if info.isreg():
        with open(path, "rb") as handle:
            tar.addfile(info, handle)
    else:
        tar.addfile(info)


__all__ = ["archive_directory", "package", "tarball_name", "unpack"]
