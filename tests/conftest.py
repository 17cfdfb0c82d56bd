"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from binsmith.backends.base import ExecOptions
from binsmith.fetch.http import sha256_file
from binsmith.packaging import archive_directory
from binsmith.platforms import Platform
from binsmith.release import ReleaseAsset
from binsmith.workspace import Workspace

BuildAction = Callable[[Workspace, Platform], int]


@dataclass(slots=True)
class RecordingMounter:
    root: Path
    mounted: list[Path] = field(default_factory=list)
    events: list[tuple[str, str]] = field(default_factory=list)
    busy: set[str] = field(default_factory=set)

    def mount(self, platform: Platform) -> Path:
        path = self.root / platform.triplet
        path.mkdir(parents=True, exist_ok=True)
        self.mounted.append(path)
        self.events.append(("mount", platform.triplet))
        return path

    def unmount(self, path: Path) -> None:
        if path.name in self.busy:
            raise OSError(f"umount: {path}: target is busy")
        self.mounted.remove(path)
        self.events.append(("unmount", path.name))


def install_libfoo(workspace: Workspace, platform: Platform) -> int:
    libdir = workspace.prefix / "lib"
    libdir.mkdir(parents=True, exist_ok=True)
    (libdir / "libfoo.so").write_text(f"libfoo for {platform.triplet}\n", encoding="utf-8")
    return 0


@dataclass(slots=True)
class ScriptedExecutor:
    """Runs a Python callable in place of the sandboxed build script."""

    action: BuildAction = install_libfoo
    executed: list[tuple[str, ExecOptions]] = field(default_factory=list)
    shells: list[str] = field(default_factory=list)
    seen_prefix_files: list[list[str]] = field(default_factory=list)

    def execute(
        self,
        script: str,
        workspace: Workspace,
        platform: Platform,
        options: ExecOptions,
    ) -> int:
        self.executed.append((platform.triplet, options))
        self.seen_prefix_files.append(
            sorted(p.relative_to(workspace.prefix).as_posix() for p in workspace.prefix.rglob("*"))
        )
        return self.action(workspace, platform)

    def enter_interactive_shell(self, workspace: Workspace, platform: Platform) -> None:
        self.shells.append(platform.triplet)


@dataclass(slots=True)
class MemoryReleaseHost:
    assets: dict[str, bytes] = field(default_factory=dict)
    downloads: list[str] = field(default_factory=list)

    def list_assets(self, repo: str, tag: str) -> list[ReleaseAsset]:
        return [ReleaseAsset(name=name, url=f"memory://{name}") for name in sorted(self.assets)]

    def download(self, url: str, destination: Path) -> Path:
        name = url.removeprefix("memory://")
        self.downloads.append(name)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.assets[name])
        return destination


@pytest.fixture
def recording_mounter(tmp_path: Path) -> RecordingMounter:
    return RecordingMounter(root=tmp_path / "shards")


@pytest.fixture
def scripted_executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture
def memory_release_host() -> MemoryReleaseHost:
    return MemoryReleaseHost()


@pytest.fixture
def make_tarball(tmp_path: Path) -> Callable[[str, dict[str, str]], tuple[Path, str]]:
    """Build a deterministic tarball from ``{relative path: text}`` and return it with its hash."""

    def _make(name: str, files: dict[str, str]) -> tuple[Path, str]:
        tree = tmp_path / "trees" / name
        for relative, content in files.items():
            path = tree / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        tarball = archive_directory(tree, tmp_path / "tarballs" / name)
        return tarball, sha256_file(tarball)

    return _make
