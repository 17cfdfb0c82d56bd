"""Target platform identifiers and triplet parsing."""

from __future__ import annotations

import platform as _host
import re
import sys
from dataclasses import dataclass
from typing import Literal

from binsmith.errors import ValidationError

OS = Literal["linux", "macos", "windows", "freebsd"]
Libc = Literal["glibc", "musl"]

_ARCH = r"(?P<arch>x86_64|i686|aarch64|armv7l|arm|powerpc64le)"
_EDGE = r"(?<![A-Za-z0-9_])"

_PATTERNS: tuple[tuple[OS, re.Pattern[str]], ...] = (
    (
        "linux",
        re.compile(
            _EDGE + _ARCH + r"-(?:unknown-|pc-)?linux-(?P<libc>gnu|musl)(?P<abi>eabihf)?"
        ),
    ),
    ("macos", re.compile(_EDGE + _ARCH + r"-apple-darwin(?P<ver>\d+(?:\.\d+)*)?")),
    ("windows", re.compile(_EDGE + _ARCH + r"-w64-mingw32")),
    ("freebsd", re.compile(_EDGE + _ARCH + r"-unknown-freebsd(?P<ver>\d+(?:\.\d+)*)?")),
)

_DEFAULT_OS_VERSION: dict[tuple[OS, str], str] = {
    ("macos", "x86_64"): "14",
    ("macos", "aarch64"): "20",
    ("freebsd", "x86_64"): "11.1",
    ("freebsd", "aarch64"): "11.1",
}


@dataclass(frozen=True, slots=True)
class Platform:
    arch: str
    os: OS
    libc: Libc | None = None
    call_abi: str | None = None
    os_version: str | None = None

    def __post_init__(self) -> None:
        if self.os == "linux" and self.libc is None:
            object.__setattr__(self, "libc", "glibc")

    @property
    def triplet(self) -> str:
        if self.os == "linux":
            libc = "musl" if self.libc == "musl" else "gnu"
            return f"{self.arch}-linux-{libc}{self.call_abi or ''}"
        if self.os == "macos":
            return f"{self.arch}-apple-darwin{self._version()}"
        if self.os == "windows":
            return f"{self.arch}-w64-mingw32"
        return f"{self.arch}-unknown-freebsd{self._version()}"

    @property
    def is_windows(self) -> bool:
        return self.os == "windows"

    @property
    def is_macos(self) -> bool:
        return self.os == "macos"

    def _version(self) -> str:
        return self.os_version or _DEFAULT_OS_VERSION.get((self.os, self.arch), "")

    def __str__(self) -> str:
        return self.triplet


def _from_match(os_name: OS, match: re.Match[str]) -> Platform:
    groups = match.groupdict()
    if os_name == "linux":
        return Platform(
            arch=groups["arch"],
            os="linux",
            libc="musl" if groups["libc"] == "musl" else "glibc",
            call_abi=groups.get("abi"),
        )
    version = groups.get("ver")
    if version == _DEFAULT_OS_VERSION.get((os_name, groups["arch"])):
        version = None
    return Platform(arch=groups["arch"], os=os_name, os_version=version)


def parse_triplet(text: str) -> Platform:
    """Parse a full triplet string such as ``x86_64-linux-gnu``."""
    candidate = text.strip()
    for os_name, pattern in _PATTERNS:
        match = pattern.fullmatch(candidate)
        if match is not None:
            return _from_match(os_name, match)
    raise ValidationError(
        f"Unrecognized platform triplet `{text}`.",
        hint="Use a triplet such as x86_64-linux-gnu or x86_64-apple-darwin14.",
        context={"triplet": text},
    )


def extract_platform(filename: str) -> Platform | None:
    """Recover the platform encoded in an artifact file name, if any."""
    for os_name, pattern in _PATTERNS:
        match = pattern.search(filename)
        if match is not None:
            return _from_match(os_name, match)
    return None


def host_platform() -> Platform:
    machine = _host.machine().lower()
    arch = {"amd64": "x86_64", "arm64": "aarch64", "x86": "i686", "i386": "i686"}.get(
        machine, machine
    )
    if sys.platform.startswith("darwin"):
        return Platform(arch=arch, os="macos")
    if sys.platform.startswith(("win32", "cygwin")):
        return Platform(arch=arch, os="windows")
    if sys.platform.startswith("freebsd"):
        return Platform(arch=arch, os="freebsd")
    libc_name, _ = _host.libc_ver()
    abi = "eabihf" if arch.startswith("arm") else None
    return Platform(
        arch=arch,
        os="linux",
        libc="glibc" if libc_name == "glibc" else "musl",
        call_abi=abi,
    )


def supported_platforms() -> list[Platform]:
    return [
        Platform("i686", "linux", "glibc"),
        Platform("x86_64", "linux", "glibc"),
        Platform("aarch64", "linux", "glibc"),
        Platform("arm", "linux", "glibc", "eabihf"),
        Platform("powerpc64le", "linux", "glibc"),
        Platform("i686", "linux", "musl"),
        Platform("x86_64", "linux", "musl"),
        Platform("aarch64", "linux", "musl"),
        Platform("arm", "linux", "musl", "eabihf"),
        Platform("x86_64", "macos"),
        Platform("x86_64", "freebsd"),
        Platform("i686", "windows"),
        Platform("x86_64", "windows"),
    ]


__all__ = [
    "Libc",
    "OS",
    "Platform",
    "extract_platform",
    "host_platform",
    "parse_triplet",
    "supported_platforms",
]
