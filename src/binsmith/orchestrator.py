"""Drive a full multi-platform run: sources, per-platform builds, manifest."""

from __future__ import annotations

import math
import os
import sys
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TextIO

from binsmith.backends.base import Auditor, NoAudit, SandboxExecutor
from binsmith.build import BuildRequest, run_build
from binsmith.config import BuildConfig, ReleaseTarget, RunOptions
from binsmith.dependencies import purge_dependencies
from binsmith.errors import BackendExecutionError, BinsmithError, PartitionArgumentError
from binsmith.manifest import render_manifest, write_manifest
from binsmith.models import ArtifactRecord, BuildManifest, Recipe, ResolvedSource
from binsmith.observability import StructuredLogger
from binsmith.packaging import package
from binsmith.platforms import Platform
from binsmith.release import GitHubReleases, ReleaseHost, reconstruct_artifacts
from binsmith.shards import ShardMounter, ShardPool
from binsmith.sources import SourceResolver
from binsmith.workspace import Workspace, create_workspace


class RunState(StrEnum):
    IDLE = "idle"
    SOURCES_RESOLVED = "sources_resolved"
    BUILDING = "building"
    MANIFEST_WRITTEN = "manifest_written"
    DONE = "done"
    ABORTED = "aborted"


def partition_platforms(
    platforms: Sequence[Platform],
    part: int,
    parts: int,
) -> list[Platform]:
    """Return the ``part``-th (1-indexed) of ``parts`` contiguous slices of ``platforms``."""
    if parts < 1 or not 1 <= part <= parts:
        raise PartitionArgumentError(
            f"Invalid partition {part}/{parts}.",
            hint="Use --part=n/m with 1 <= n <= m.",
            context={"operation": "partition", "part": str(part), "parts": str(parts)},
        )
    total = len(platforms)
    size = math.ceil(total / parts)
    return list(platforms[size * (part - 1) : min(total, size * part)])


def heartbeat_wanted(
    verbose: bool,
    env: Mapping[str, str],
    stream: TextIO,
) -> bool:
    """CI logs and redirected output need periodic activity to avoid idle timeouts."""
    if verbose:
        return False
    if env.get("CI"):
        return True
    isatty = getattr(stream, "isatty", None)
    return not (callable(isatty) and isatty())


class Heartbeat:
    """Writes a dot to ``stream`` every ``interval`` seconds until stopped."""

    def __init__(self, stream: TextIO, interval: float = 4.0) -> None:
        self.stream = stream
        self.interval = interval
        self.beats = 0
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="binsmith-heartbeat", daemon=True)

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> Heartbeat:
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join()

    def __enter__(self) -> Heartbeat:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.stream.write(".")
            self.stream.flush()
            self.beats += 1


@dataclass(slots=True)
class RunResult:
    state: RunState
    platforms: tuple[str, ...]
    artifacts: dict[str, ArtifactRecord] = field(default_factory=dict)
    manifest_path: Path | None = None
    log_path: Path | None = None


class Orchestrator:
    def __init__(
        self,
        recipe: Recipe,
        config: BuildConfig,
        target: ReleaseTarget,
        *,
        executor: SandboxExecutor,
        mounter: ShardMounter,
        auditor: Auditor | None = None,
        release_host: ReleaseHost | None = None,
        logger: StructuredLogger | None = None,
        env: Mapping[str, str] | None = None,
        stream: TextIO | None = None,
    ) -> None:
        self.recipe = recipe
        self.config = config
        self.target = target
        self.executor = executor
        self.auditor = auditor or NoAudit()
        self.env = dict(os.environ) if env is None else dict(env)
        self.release_host = release_host or GitHubReleases(token=self.env.get("GITHUB_TOKEN"))
        self.logger = logger or StructuredLogger()
        self.stream = stream or sys.stdout
        self.pool = ShardPool(mounter, max_mounts=config.max_mounts, logger=self.logger)
        self.state = RunState.IDLE

    def selected_platforms(self, options: RunOptions) -> list[Platform]:
        platforms = list(options.platforms or self.recipe.platforms)
        if options.part is not None:
            part, parts = options.part
            platforms = partition_platforms(platforms, part, parts)
        return platforms

    def run(self, options: RunOptions) -> RunResult:
        self.state = RunState.IDLE
        platforms = self.selected_platforms(options)
        result = RunResult(state=self.state, platforms=tuple(p.triplet for p in platforms))
        heartbeat: Heartbeat | None = None
        aborted = False
        try:
            if options.only_manifest:
                result.artifacts = reconstruct_artifacts(
                    self.release_host,
                    self.target.repo,
                    self.target.tag,
                    name_filter=f"v{self.recipe.version}",
                    logger=self.logger,
                )
            else:
                sources = self._resolve_sources()
                self.state = RunState.BUILDING
                if heartbeat_wanted(options.verbose, self.env, self.stream):
                    heartbeat = Heartbeat(self.stream, self.config.heartbeat_interval).start()
                for platform in platforms:
                    result.artifacts[platform.triplet] = self._build_platform(
                        platform, sources, options
                    )
                if heartbeat is not None:
                    heartbeat.stop()
                    heartbeat = None

            if options.writes_manifest:
                manifest = BuildManifest(
                    name=self.recipe.name,
                    version=self.recipe.version,
                    products=self.recipe.products,
                    artifacts=dict(result.artifacts),
                    bin_path=self.target.bin_path,
                )
                result.manifest_path = write_manifest(self.config.products_dir, manifest)
                self.state = RunState.MANIFEST_WRITTEN
                self.logger.log(
                    operation="write_manifest",
                    platform=None,
                    phase="manifest",
                    message=f"Wrote {result.manifest_path.name}.",
                    extra={"artifacts": len(result.artifacts)},
                )
                if options.verbose and options.only_manifest and self.logger.echo is not None:
                    self.logger.echo.write(render_manifest(manifest))
            self.state = RunState.DONE
        except BaseException:
            self.state = RunState.ABORTED
            aborted = True
            raise
        finally:
            if heartbeat is not None:
                heartbeat.stop()
            release_error = self._release_shards(aborted)
            result.state = self.state
            log_path = self.config.build_dir / "logs" / "run.jsonl"
            result.log_path = self.logger.to_json_lines(log_path)
        if release_error is not None:
            raise release_error
        return result

    def _release_shards(self, aborted: bool) -> BinsmithError | None:
        """Release every shard; a failure here never replaces an error already raised."""
        try:
            self.pool.release_all()
        except BinsmithError as exc:
            exc.context["phase"] = "cleanup"
            if aborted:
                return None
            self.state = RunState.ABORTED
            return exc
        return None

    def _resolve_sources(self) -> list[ResolvedSource]:
        resolver = SourceResolver(
            self.config.downloads_dir,
            self.config.build_dir / "sources",
            max_workers=self.config.source_workers,
            logger=self.logger,
        )
        try:
            sources = resolver.resolve_all(self.recipe.sources)
        except BinsmithError as exc:
            exc.context["phase"] = "sources"
            raise
        self.state = RunState.SOURCES_RESOLVED
        return sources

    def _build_platform(
        self,
        platform: Platform,
        sources: Sequence[ResolvedSource],
        options: RunOptions,
    ) -> ArtifactRecord:
        triplet = platform.triplet
        self.logger.log(
            operation="build_platform",
            platform=triplet,
            phase="start",
            message=f"Building for {triplet}.",
        )
        phase = "mount"
        workspace: Workspace | None = None
        completed = False
        try:
            with self.pool.scoped(platform) as shard:
                phase = "setup"
                workspace = create_workspace(
                    self.config.build_dir,
                    sources,
                    self.recipe.dependencies,
                    platform,
                    shard,
                    self.config.downloads_dir,
                    logger=self.logger,
                )
                phase = "build"
                run_build(
                    self.executor,
                    BuildRequest(
                        name=self.recipe.name,
                        products=self.recipe.products,
                        script=self.recipe.script,
                        platform=platform,
                        workspace=workspace,
                    ),
                    verbose=options.verbose,
                    debug=options.debug,
                    ignore_manifests=workspace.dependency_manifests,
                    auditor=self.auditor,
                    logger=self.logger,
                )
                phase = "purge"
                purge_dependencies(workspace.prefix, self.recipe.dependencies, platform)
                phase = "package"
                record = package(
                    workspace.prefix,
                    self.config.products_dir / self.recipe.name,
                    self.recipe.version,
                    platform,
                )
                phase = "unmount"
            completed = True
        except BinsmithError as exc:
            self._record_failure(exc, triplet, phase)
            raise
        except Exception as exc:
            wrapped = BackendExecutionError(
                f"Unexpected {type(exc).__name__} while building for {triplet}.",
                hint="Inspect the kept workspace with --debug.",
                context={"operation": "build_platform", "reason": str(exc)},
            )
            self._record_failure(wrapped, triplet, phase)
            raise wrapped from exc
        finally:
            if workspace is not None:
                if completed or not options.debug:
                    workspace.destroy()
                else:
                    self.logger.log(
                        operation="build_platform",
                        platform=triplet,
                        phase=phase,
                        level="warning",
                        message=f"Keeping failed workspace at {workspace.root}.",
                    )

        self.logger.log(
            operation="build_platform",
            platform=triplet,
            phase="package",
            message=f"Packaged {record.file_name}.",
            extra={"sha256": record.sha256},
        )
        return record

    def _record_failure(self, exc: BinsmithError, triplet: str, phase: str) -> None:
        exc.context["platform"] = triplet
        exc.context["phase"] = phase
        self.logger.log(
            operation="build_platform",
            platform=triplet,
            phase=phase,
            level="error",
            message=f"Build for {triplet} failed.",
            extra={"code": exc.code},
        )


__all__ = [
    "Heartbeat",
    "Orchestrator",
    "RunResult",
    "RunState",
    "heartbeat_wanted",
    "partition_platforms",
]
