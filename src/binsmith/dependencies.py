"""Build-time dependencies: install into a prefix and purge them before packaging.

A dependency is described by another package's generated manifest document.
Only its ``download_info`` literal is read; the document is never executed.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from urllib.error import URLError
from urllib.parse import urlparse
from urllib.request import urlopen

from binsmith.errors import ManifestResolutionError
from binsmith.fetch.http import as_url
from binsmith.manifest import read_download_info
from binsmith.observability import StructuredLogger
from binsmith.platforms import Platform
from binsmith.provider import install, manifest_path_for, uninstall


@dataclass(frozen=True, slots=True)
class DependencyDescriptor:
    name: str
    url: str
    sha256: str
    manifest_path: Path


@dataclass(frozen=True, slots=True)
class Dependency:
    name: str
    manifest_source: str

    def load_document(self) -> str:
        source = self.manifest_source
        if urlparse(source).scheme not in ("http", "https", "file"):
            path = Path(source)
            try:
                return path.read_text(encoding="utf-8")
            except OSError as exc:
                raise self._unresolvable("Manifest document could not be read.", exc) from exc
        try:
            with urlopen(as_url(source)) as response:  # noqa: S310 - hashes verified on install
                return response.read().decode("utf-8")
        except (URLError, OSError) as exc:
            raise self._unresolvable("Manifest document could not be fetched.", exc) from exc

    def descriptor(self, platform: Platform, prefix: str | Path) -> DependencyDescriptor:
        """Return where this dependency's tarball lives for ``platform``; installs nothing."""
        table = read_download_info(self.load_document(), source=self.manifest_source)
        entry = table.get(platform.triplet)
        if entry is None:
            raise ManifestResolutionError(
                f"Dependency `{self.name}` has no build for {platform.triplet}.",
                hint="Build the dependency for this platform or drop it from the recipe.",
                context={
                    "operation": "dependency_descriptor",
                    "dependency": self.name,
                    "platform": platform.triplet,
                    "available": ", ".join(sorted(table)),
                },
            )
        url, sha256 = entry
        return DependencyDescriptor(
            name=self.name,
            url=url,
            sha256=sha256,
            manifest_path=manifest_path_for(url, prefix),
        )

    def _unresolvable(self, message: str, exc: Exception) -> ManifestResolutionError:
        return ManifestResolutionError(
            message,
            hint="Check the dependency's manifest_source path or URL.",
            context={
                "operation": "dependency_descriptor",
                "dependency": self.name,
                "source": self.manifest_source,
                "reason": str(exc),
            },
        )


def install_dependencies(
    prefix: str | Path,
    dependencies: Sequence[Dependency],
    platform: Platform,
    *,
    cache_dir: str | Path | None = None,
    logger: StructuredLogger | None = None,
) -> list[Path]:
    """Install each dependency's tarball into ``prefix``; return the manifests written."""
    manifests: list[Path] = []
    for dependency in dependencies:
        desc = dependency.descriptor(platform, prefix)
        manifests.append(
            install(
                desc.url,
                desc.sha256,
                prefix=prefix,
                force=True,
                cache_dir=cache_dir,
                logger=logger,
            )
        )
    return manifests


def purge_dependencies(
    prefix: str | Path,
    dependencies: Sequence[Dependency],
    platform: Platform,
) -> list[Path]:
    """Remove exactly the files each dependency installed; return what was deleted."""
    removed: list[Path] = []
    for dependency in dependencies:
        desc = dependency.descriptor(platform, prefix)
        if not desc.manifest_path.is_file():
            raise ManifestResolutionError(
                f"Installation manifest for `{dependency.name}` is missing.",
                hint="The build script must not delete files under prefix/manifests.",
                context={
                    "operation": "purge_dependencies",
                    "dependency": dependency.name,
                    "manifest": str(desc.manifest_path),
                },
            )
        removed.extend(uninstall(desc.manifest_path, prefix=prefix))
    return removed


__all__ = [
    "Dependency",
    "DependencyDescriptor",
    "install_dependencies",
    "purge_dependencies",
]
