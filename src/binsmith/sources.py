"""Resolve source declarations into verified local paths and content hashes."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from urllib.parse import unquote, urlparse

from binsmith.errors import ValidationError
from binsmith.fetch.git import clone_or_fetch
from binsmith.fetch.http import cache_slot, download_verify, sha256_file, text_key, verify
from binsmith.models import (
    ARCHIVE_SUFFIXES,
    GitSource,
    LocalDirectory,
    RemoteArchive,
    ResolvedSource,
    SourceKind,
    SourceSpec,
)
from binsmith.observability import StructuredLogger
from binsmith.packaging import archive_directory


class SourceResolver:
    """Resolves each distinct source at most once, sharing a downloads cache."""

    def __init__(
        self,
        downloads_dir: str | Path,
        scratch_dir: str | Path,
        *,
        max_workers: int = 4,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.downloads_dir = Path(downloads_dir)
        self.scratch_dir = Path(scratch_dir)
        self.max_workers = max(1, max_workers)
        self.logger = logger or StructuredLogger()
        self._resolved: dict[SourceSpec, ResolvedSource] = {}
        self._locks: dict[SourceSpec, threading.Lock] = {}
        self._guard = threading.Lock()

    def resolve_all(self, specs: Sequence[SourceSpec]) -> list[ResolvedSource]:
        if not specs:
            return []
        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(self.resolve, specs))

    def resolve(self, spec: SourceSpec) -> ResolvedSource:
        with self._guard:
            lock = self._locks.setdefault(spec, threading.Lock())
        with lock:
            cached = self._resolved.get(spec)
            if cached is not None:
                return cached
            resolved = self._resolve_uncached(spec)
            self._resolved[spec] = resolved
            return resolved

    def _resolve_uncached(self, spec: SourceSpec) -> ResolvedSource:
        match spec:
            case RemoteArchive(url=url, sha256=sha256):
                return self._resolve_archive(url, sha256)
            case GitSource(url=url, ref=ref):
                mirror = clone_or_fetch(
                    url, cache_slot(self.downloads_dir / "git", text_key(url), _basename(url))
                )
                self.logger.log(
                    operation="resolve_source",
                    platform=None,
                    phase="sources",
                    message=f"Fetched git source {url}.",
                    extra={"path": str(mirror)},
                )
                return ResolvedSource(path=mirror, sha256=None, kind="git", ref=ref)
            case LocalDirectory(path=path):
                return self._resolve_directory(Path(path))
        raise ValidationError(
            "Sources must be a RemoteArchive, GitSource or LocalDirectory.",
            context={"operation": "resolve_source", "source": repr(spec)},
        )

    def _resolve_archive(self, url: str, sha256: str) -> ResolvedSource:
        if not sha256:
            raise ValidationError(
                "RemoteArchive requires a sha256 value.",
                context={"operation": "resolve_source", "url": url},
            )
        local = _local_path(url)
        if local is not None and local.is_file():
            # Locally-sourced files are verified where they are instead of copied.
            verify(local, sha256)
            path = local.resolve()
        else:
            path = download_verify(
                url, sha256, cache_slot(self.downloads_dir, sha256, _basename(url))
            )
        self.logger.log(
            operation="resolve_source",
            platform=None,
            phase="sources",
            message=f"Verified {path.name}.",
            extra={"url": url, "sha256": sha256},
        )
        return ResolvedSource(path=path, sha256=sha256, kind=_kind_for(path.name))

    def _resolve_directory(self, directory: Path) -> ResolvedSource:
        if not directory.is_dir():
            raise ValidationError(
                "LocalDirectory source does not exist.",
                hint="Sources must be a URL/hash pair or a path to a local directory.",
                context={"operation": "resolve_source", "path": str(directory)},
            )
        slot = cache_slot(
            self.scratch_dir, text_key(str(directory.resolve())), f"{directory.name}.tar.gz"
        )
        tarball = archive_directory(directory, slot)
        digest = sha256_file(tarball)
        self.logger.log(
            operation="resolve_source",
            platform=None,
            phase="sources",
            message=f"Packaged local directory {directory}.",
            extra={"sha256": digest},
        )
        return ResolvedSource(path=tarball, sha256=digest, kind="archive")


def _local_path(url: str) -> Path | None:
    if urlparse(url).scheme:
        return None
    return Path(url)


def _basename(url: str) -> str:
    name = unquote(urlparse(url).path).rstrip("/").rsplit("/", 1)[-1]
    if not name:
        raise ValidationError(
            "Cannot derive a cache file name from source URL.",
            context={"operation": "resolve_source", "url": url},
        )
    return name


def _kind_for(name: str) -> SourceKind:
    return "archive" if name.endswith(ARCHIVE_SUFFIXES) else "file"


__all__ = ["SourceResolver"]
