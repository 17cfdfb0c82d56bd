"""Per-platform build workspaces."""

from __future__ import annotations

import contextlib
import shutil
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from binsmith.dependencies import Dependency, install_dependencies
from binsmith.errors import ValidationError
from binsmith.fetch.git import checkout
from binsmith.models import ResolvedSource
from binsmith.observability import StructuredLogger
from binsmith.packaging import unpack
from binsmith.platforms import Platform
from binsmith.shards import ShardHandle


@dataclass(slots=True)
class Workspace:
    root: Path
    prefix: Path
    srcdir: Path
    platform: Platform
    shard: ShardHandle | None = None
    sources: tuple[ResolvedSource, ...] = ()
    dependency_manifests: tuple[Path, ...] = ()
    destroyed: bool = False

    @property
    def logs_dir(self) -> Path:
        """Build logs live under ``{build_dir}/logs/{triplet}`` and outlive the workspace."""
        return self.root.parent.parent / "logs" / self.platform.triplet

    def destroy(self) -> None:
        """Remove the workspace and its per-platform directory once that is empty."""
        if self.destroyed:
            return
        shutil.rmtree(self.root, ignore_errors=True)
        with contextlib.suppress(OSError):
            self.root.parent.rmdir()
        self.destroyed = True


def create_workspace(
    build_dir: str | Path,
    sources: Sequence[ResolvedSource],
    dependencies: Sequence[Dependency],
    platform: Platform,
    shard: ShardHandle | None,
    downloads_dir: str | Path | None = None,
    *,
    logger: StructuredLogger | None = None,
) -> Workspace:
    """Create a fresh workspace, lay out sources and install dependencies."""
    platform_dir = Path(build_dir) / platform.triplet
    platform_dir.mkdir(parents=True, exist_ok=True)
    root = Path(tempfile.mkdtemp(prefix="ws-", dir=platform_dir))
    srcdir = root / "srcdir"
    prefix = root / "destdir"
    srcdir.mkdir()
    prefix.mkdir()

    workspace = Workspace(
        root=root,
        prefix=prefix,
        srcdir=srcdir,
        platform=platform,
        shard=shard,
        sources=tuple(sources),
    )
    try:
        for source in sources:
            _materialize(source, srcdir)

        install_dependencies(
            prefix, dependencies, platform, cache_dir=downloads_dir, logger=logger
        )
        manifests_dir = prefix / "manifests"
        if manifests_dir.is_dir():
            workspace.dependency_manifests = tuple(sorted(manifests_dir.glob("*.list")))

        staging = prefix / "downloads"
        if staging.exists():
            shutil.rmtree(staging)
    except BaseException:
        workspace.destroy()
        raise

    (logger or StructuredLogger()).log(
        operation="create_workspace",
        platform=platform.triplet,
        phase="setup",
        message=f"Workspace ready at {root}.",
        extra={
            "sources": len(workspace.sources),
            "dependency_manifests": len(workspace.dependency_manifests),
        },
    )
    return workspace


def _materialize(source: ResolvedSource, srcdir: Path) -> None:
    match source.kind:
        case "archive":
            unpack(source.path, srcdir)
        case "file":
            shutil.copy2(source.path, srcdir / source.path.name)
        case "git":
            checkout(source.path, srcdir / source.path.name.removesuffix(".git"), ref=source.ref)
        case _:
            raise ValidationError(
                "Unknown resolved source kind.",
                context={"operation": "create_workspace", "kind": str(source.kind)},
            )


__all__ = ["Workspace", "create_workspace"]
