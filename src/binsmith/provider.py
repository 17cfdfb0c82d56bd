"""Install, inspect and uninstall published tarballs inside a prefix.

These helpers back the generated manifest documents that downstream consumers
run, and they are also how a build installs its own dependencies: every
installation writes a manifest listing the files it unpacked so that the same
set can later be removed exactly.
"""

from __future__ import annotations

import shutil
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import unquote, urlparse

from binsmith.errors import ProductMissing, ValidationError
from binsmith.fetch.http import cache_slot, download_verify, sha256_file
from binsmith.observability import StructuredLogger
from binsmith.packaging import unpack
from binsmith.platforms import Platform, host_platform
from binsmith.products import Product

TARBALL_SUFFIXES = (".tar.gz", ".tgz", ".tar.xz", ".tar.bz2", ".tar")


def _tarball_basename(url: str) -> str:
    name = unquote(urlparse(url).path).rstrip("/").rsplit("/", 1)[-1]
    if not name:
        raise ValidationError("Tarball URL has no file name.", context={"url": url})
    return name


def manifest_path_for(url: str, prefix: str | Path) -> Path:
    name = _tarball_basename(url)
    for suffix in TARBALL_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    return Path(prefix) / "manifests" / f"{name}.list"


def staging_path_for(url: str, prefix: str | Path) -> Path:
    return Path(prefix) / "downloads" / _tarball_basename(url)


def read_manifest(manifest_path: str | Path) -> list[str]:
    lines = Path(manifest_path).read_text(encoding="utf-8").splitlines()
    return [line for line in lines if line.strip()]


def install(
    url: str,
    sha256: str,
    *,
    prefix: str | Path,
    force: bool = False,
    cache_dir: str | Path | None = None,
    logger: StructuredLogger | None = None,
) -> Path:
    """Download, verify and unpack a tarball into ``prefix``; return its manifest path.

    With ``cache_dir`` the verified tarball is fetched into, or reused from,
    that shared directory before being staged under ``prefix/downloads``.
    """
    root = Path(prefix)
    manifest = manifest_path_for(url, root)
    if manifest.exists():
        if not force:
            raise ValidationError(
                "Tarball is already installed in this prefix.",
                hint="Pass force=True to reinstall.",
                context={"operation": "install", "url": url, "manifest": str(manifest)},
            )
        uninstall(manifest, prefix=root)

    staged = staging_path_for(url, root)
    if cache_dir is None:
        tarball = download_verify(url, sha256, staged)
    else:
        cached = download_verify(url, sha256, cache_slot(cache_dir, sha256, staged.name))
        staged.parent.mkdir(parents=True, exist_ok=True)
        tarball = Path(shutil.copy2(cached, staged))
    files = unpack(tarball, root)
    manifest.parent.mkdir(parents=True, exist_ok=True)
    manifest.write_text("".join(f"{name}\n" for name in files), encoding="utf-8")
    if logger is not None:
        logger.log(
            operation="install",
            platform=None,
            phase="dependencies",
            message=f"Installed {tarball.name}.",
            extra={"files": len(files), "manifest": str(manifest)},
        )
    return manifest


def uninstall(manifest_path: str | Path, *, prefix: str | Path) -> list[Path]:
    """Remove every file listed in a manifest, then the manifest itself."""
    root = Path(prefix).resolve()
    manifest = Path(manifest_path)
    removed: list[Path] = []
    for relative in read_manifest(manifest):
        target = root / relative
        if not target.resolve().is_relative_to(root) and not target.is_symlink():
            raise ValidationError(
                "Manifest entry escapes the prefix.",
                context={"operation": "uninstall", "entry": relative, "prefix": str(root)},
            )
        if target.is_symlink() or target.exists():
            target.unlink()
            removed.append(target)
            _prune_empty_parents(target.parent, root)
    manifest.unlink()
    _prune_empty_parents(manifest.parent, root)
    return removed


def isinstalled(url: str, sha256: str, *, prefix: str | Path) -> bool:
    manifest = manifest_path_for(url, prefix)
    tarball = staging_path_for(url, prefix)
    if not manifest.exists() or not tarball.exists():
        return False
    if sha256_file(tarball) != sha256:
        return False
    root = Path(prefix)
    return all(
        (root / name).exists() or (root / name).is_symlink() for name in read_manifest(manifest)
    )


def satisfied(product: Product, *, prefix: str | Path, platform: Platform | None = None) -> bool:
    return product.locate(Path(prefix), platform or host_platform()) is not None


def write_deps_file(
    path: str | Path,
    products: Iterable[Product],
    *,
    prefix: str | Path,
    platform: Platform | None = None,
) -> Path:
    """Write a Python module mapping each product variable to its installed path."""
    selected = platform or host_platform()
    lines = ["# This file is automatically generated; do not edit.", ""]
    for product in products:
        located = product.locate(Path(prefix), selected)
        if located is None:
            raise ProductMissing(
                f"Product `{product.variable_name}` is not installed.",
                hint="Re-run the build script to reinstall the binaries.",
                context={"product": product.render(), "prefix": str(prefix)},
            )
        lines.append(f"{product.variable_name} = {str(located.resolve())!r}")
    output = Path(path)
    output.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return output


def _prune_empty_parents(directory: Path, root: Path) -> None:
    current = directory.resolve()
    while current != root and current.is_relative_to(root):
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent


__all__ = [
    "host_platform",
    "install",
    "isinstalled",
    "manifest_path_for",
    "read_manifest",
    "satisfied",
    "staging_path_for",
    "uninstall",
    "write_deps_file",
]
