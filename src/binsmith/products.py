"""Declared build products and their location rules under a prefix."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from binsmith.errors import ValidationError
from binsmith.platforms import Platform


@runtime_checkable
class Product(Protocol):
    variable_name: str

    def locate(self, prefix: Path, platform: Platform) -> Path | None:
        """Return the product's path under ``prefix`` or None when it is absent."""

    def render(self) -> str:
        """Return Python source that reconstructs this product."""


def _library_pattern(libname: str, platform: Platform) -> re.Pattern[str]:
    name = re.escape(libname)
    if platform.is_windows:
        return re.compile(rf"^{name}(-[\d.]+)?\.dll$")
    if platform.is_macos:
        return re.compile(rf"^{name}(\.[\d.]+)?\.dylib$")
    return re.compile(rf"^{name}\.so(\.\d+)*$")


@dataclass(frozen=True, slots=True)
class LibraryProduct:
    libnames: tuple[str, ...]
    variable_name: str
    dir_path: str | None = None

    def __post_init__(self) -> None:
        if not self.libnames:
            raise ValidationError("LibraryProduct requires at least one library name.")

    def locate(self, prefix: Path, platform: Platform) -> Path | None:
        if self.dir_path is not None:
            libdir = prefix / self.dir_path
        else:
            libdir = prefix / ("bin" if platform.is_windows else "lib")
        if not libdir.is_dir():
            return None
        entries = sorted(libdir.iterdir())
        for libname in self.libnames:
            pattern = _library_pattern(libname, platform)
            for entry in entries:
                if pattern.match(entry.name) and entry.exists():
                    return entry
        return None

    def render(self) -> str:
        args = [repr(tuple(self.libnames)), repr(self.variable_name)]
        if self.dir_path is not None:
            args.append(f"dir_path={self.dir_path!r}")
        return f"LibraryProduct({', '.join(args)})"


@dataclass(frozen=True, slots=True)
class ExecutableProduct:
    binname: str
    variable_name: str
    dir_path: str | None = None

    def locate(self, prefix: Path, platform: Platform) -> Path | None:
        bindir = prefix / (self.dir_path or "bin")
        suffix = ".exe" if platform.is_windows else ""
        candidate = bindir / f"{self.binname}{suffix}"
        return candidate if candidate.is_file() else None

    def render(self) -> str:
        args = [repr(self.binname), repr(self.variable_name)]
        if self.dir_path is not None:
            args.append(f"dir_path={self.dir_path!r}")
        return f"ExecutableProduct({', '.join(args)})"


@dataclass(frozen=True, slots=True)
class FileProduct:
    path: str
    variable_name: str

    def locate(self, prefix: Path, platform: Platform) -> Path | None:
        candidate = prefix / self.path
        return candidate if candidate.exists() else None

    def render(self) -> str:
        return f"FileProduct({self.path!r}, {self.variable_name!r})"


def missing_products(
    products: tuple[Product, ...] | list[Product],
    prefix: Path,
    platform: Platform,
) -> list[Product]:
    return [product for product in products if product.locate(prefix, platform) is None]


__all__ = [
    "ExecutableProduct",
    "FileProduct",
    "LibraryProduct",
    "Product",
    "missing_products",
]
