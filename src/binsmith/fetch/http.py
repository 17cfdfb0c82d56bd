"""Integrity-enforced HTTP/file download implementation."""

from __future__ import annotations

import hashlib
import os
import shutil
import tempfile
from pathlib import Path
from urllib.error import URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from binsmith.errors import DownloadError, HashMismatch

CHUNK_SIZE = 1 << 16


def sha256_file(path: str | Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def cache_slot(cache_dir: str | Path, key: str, name: str) -> Path:
    """Return ``cache_dir/<key[:16]>/name``; equal names with different keys never collide."""
    return Path(cache_dir) / key[:16] / name


def text_key(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def as_url(location: str | Path) -> str:
    """Accept either a URL or a filesystem path and return a URL."""
    text = str(location)
    if urlparse(text).scheme in ("http", "https", "file", "ftp"):
        return text
    return Path(text).resolve().as_uri()


def download(
    url: str,
    destination: str | Path,
    *,
    headers: dict[str, str] | None = None,
) -> Path:
    """Download ``url`` into ``destination`` atomically, without verification."""
    target = Path(destination)
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _stage(url, target, headers=headers)
    os.replace(temp_path, target)
    return target


def download_verify(url: str, sha256: str, destination: str | Path) -> Path:
    """Fetch ``url`` into ``destination`` unless a verified copy is already there."""
    target = Path(destination)
    if target.exists():
        verify(target, sha256)
        return target

    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _stage(url, target)
    try:
        actual_sha256 = sha256_file(temp_path)
        if actual_sha256 != sha256:
            raise HashMismatch(
                "Downloaded content hash mismatch.",
                hint="Update the expected hash or source URL to a trusted immutable artifact.",
                context={
                    "operation": "download",
                    "url": url,
                    "expected": sha256,
                    "actual": actual_sha256,
                },
            )
        os.replace(temp_path, target)
    finally:
        temp_path.unlink(missing_ok=True)
    return target


def verify(path: str | Path, sha256: str) -> str:
    actual_sha256 = sha256_file(path)
    if actual_sha256 != sha256:
        raise HashMismatch(
            "Cached artifact hash mismatch.",
            hint="Delete the cached file and refetch from a trusted source.",
            context={
                "operation": "verify",
                "path": str(path),
                "expected": sha256,
                "actual": actual_sha256,
            },
        )
    return actual_sha256


def _stage(url: str, target: Path, *, headers: dict[str, str] | None = None) -> Path:
    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".part", dir=target.parent)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as sink:
            request = Request(as_url(url), headers=headers or {})
            with urlopen(request) as response:  # noqa: S310 - callers verify integrity
                shutil.copyfileobj(response, sink, CHUNK_SIZE)
    except (URLError, OSError) as exc:
        temp_path.unlink(missing_ok=True)
        raise DownloadError(
            "Download failed.",
            hint="Check network connectivity and that the URL is reachable.",
            context={"operation": "download", "url": url, "reason": str(exc)},
        ) from exc
    return temp_path
