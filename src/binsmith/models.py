"""Core typed dataclasses for recipes, sources and build outputs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import cbor2

from binsmith.platforms import Platform
from binsmith.products import Product

if TYPE_CHECKING:
    from binsmith.dependencies import Dependency

SourceKind = Literal["archive", "file", "git"]

ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tar.xz", ".tar", ".zip")


@dataclass(frozen=True, slots=True)
class RemoteArchive:
    url: str
    sha256: str


@dataclass(frozen=True, slots=True)
class GitSource:
    url: str
    ref: str | None = None


@dataclass(frozen=True, slots=True)
class LocalDirectory:
    path: Path


SourceSpec = RemoteArchive | GitSource | LocalDirectory


@dataclass(frozen=True, slots=True)
class ResolvedSource:
    path: Path
    sha256: str | None
    kind: SourceKind
    ref: str | None = None


@dataclass(frozen=True, slots=True)
class ArtifactRecord:
    file_name: str
    sha256: str


@dataclass(frozen=True, slots=True)
class Recipe:
    name: str
    version: str
    sources: tuple[SourceSpec, ...]
    script: str
    platforms: tuple[Platform, ...]
    products: tuple[Product, ...]
    dependencies: tuple[Dependency, ...] = ()


@dataclass(frozen=True, slots=True)
class BuildManifest:
    """Platform to artifact mapping handed to downstream consumers."""

    name: str
    version: str
    products: tuple[Product, ...]
    artifacts: dict[str, ArtifactRecord] = field(default_factory=dict)
    bin_path: str = ""
    schema_version: int = 1

    def download_info(self) -> dict[str, tuple[str, str]]:
        return {
            triplet: (f"{self.bin_path}/{record.file_name}", record.sha256)
            for triplet, record in sorted(self.artifacts.items())
        }

    def to_json(self, path: str | Path | None = None) -> str:
        encoded = json.dumps(self._payload(), indent=2, sort_keys=True) + "\n"
        if path is not None:
            Path(path).write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        encoded = cbor2.dumps(self._payload(), canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    def _payload(self) -> dict[str, object]:
        return {
            "schema_version": self.schema_version,
            "name": self.name,
            "version": self.version,
            "bin_path": self.bin_path,
            "products": [product.render() for product in self.products],
            "artifacts": {
                triplet: {"file_name": record.file_name, "sha256": record.sha256}
                for triplet, record in sorted(self.artifacts.items())
            },
        }


__all__ = [
    "ARCHIVE_SUFFIXES",
    "ArtifactRecord",
    "BuildManifest",
    "GitSource",
    "LocalDirectory",
    "Recipe",
    "RemoteArchive",
    "ResolvedSource",
    "SourceKind",
    "SourceSpec",
]
