"""Bounded pool of mounted platform sandbox root images."""

from __future__ import annotations

import os
import shutil
import subprocess
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Protocol

from binsmith.errors import (
    BackendExecutionError,
    BinsmithError,
    ResourceExhausted,
    ValidationError,
)
from binsmith.observability import StructuredLogger
from binsmith.platforms import Platform


class ShardMounter(Protocol):
    def mount(self, platform: Platform) -> Path:
        """Mount the sandbox root for ``platform`` and return its mount point."""

    def unmount(self, path: Path) -> None:
        """Unmount a path previously returned by ``mount``."""


@dataclass(slots=True, eq=False)
class ShardHandle:
    platform: Platform
    mount_path: Path
    released: bool = False


class ShardPool:
    """Tracks mounted shards so the loopback-device budget is never exceeded."""

    def __init__(
        self,
        mounter: ShardMounter,
        *,
        max_mounts: int = 8,
        logger: StructuredLogger | None = None,
    ) -> None:
        if max_mounts < 1:
            raise ValidationError("ShardPool requires max_mounts >= 1.")
        self.mounter = mounter
        self.max_mounts = max_mounts
        self.logger = logger or StructuredLogger()
        self._active: list[ShardHandle] = []
        self._lock = threading.Lock()

    @property
    def mounted_count(self) -> int:
        with self._lock:
            return len(self._active)

    def acquire(self, platform: Platform) -> ShardHandle:
        with self._lock:
            if len(self._active) >= self.max_mounts:
                raise ResourceExhausted(
                    "No free loopback slots for another shard mount.",
                    hint="Release shards eagerly or raise max_mounts.",
                    context={
                        "operation": "shard_acquire",
                        "platform": platform.triplet,
                        "mounted": str(len(self._active)),
                        "max_mounts": str(self.max_mounts),
                    },
                )
            mount_path = self.mounter.mount(platform)
            handle = ShardHandle(platform=platform, mount_path=mount_path)
            self._active.append(handle)
        self.logger.log(
            operation="shard_acquire",
            platform=platform.triplet,
            phase="mount",
            message="Mounted shard.",
            extra={"path": str(mount_path)},
        )
        return handle

    def release(self, handle: ShardHandle) -> None:
        with self._lock:
            if handle.released or handle not in self._active:
                raise ValidationError(
                    "Shard handle was already released.",
                    context={"operation": "shard_release", "platform": handle.platform.triplet},
                )
            self.mounter.unmount(handle.mount_path)
            self._active.remove(handle)
            handle.released = True
        self.logger.log(
            operation="shard_release",
            platform=handle.platform.triplet,
            phase="mount",
            message="Unmounted shard.",
        )

    def release_all(self) -> int:
        """Unmount every outstanding shard, attempting all of them even when some fail."""
        with self._lock:
            outstanding = list(self._active)
        failures: dict[str, str] = {}
        for handle in outstanding:
            try:
                self.release(handle)
            except (BinsmithError, OSError) as exc:
                failures[handle.platform.triplet] = str(exc)
                self._log_release_failure(handle, exc)
        if failures:
            raise BackendExecutionError(
                f"{len(failures)} of {len(outstanding)} shards could not be unmounted.",
                hint="Unmount the listed shards manually before the next run.",
                context={
                    "operation": "shard_release_all",
                    "failed": ", ".join(failures),
                    **{f"reason[{triplet}]": reason for triplet, reason in failures.items()},
                },
            )
        return len(outstanding)

    @contextmanager
    def scoped(self, platform: Platform) -> Iterator[ShardHandle]:
        handle = self.acquire(platform)
        try:
            yield handle
        except BaseException:
            try:
                self.release(handle)
            except (BinsmithError, OSError) as exc:
                # Still tracked; release_all retries it.
                self._log_release_failure(handle, exc)
            raise
        self.release(handle)

    def _log_release_failure(self, handle: ShardHandle, exc: Exception) -> None:
        self.logger.log(
            operation="shard_release",
            platform=handle.platform.triplet,
            phase="mount",
            level="error",
            message="Failed to unmount shard.",
            extra={"path": str(handle.mount_path), "reason": str(exc)},
        )


@dataclass(slots=True)
class LoopbackMounter:
    """Loop-mounts ``{image_dir}/{triplet}.squashfs`` read-only under ``mount_root``."""

    image_dir: Path
    mount_root: Path
    privilege: Literal["sudo", "none"] = "sudo"
    mount_args: list[str] = field(default_factory=lambda: ["-o", "ro,loop"])

    def mount(self, platform: Platform) -> Path:
        self._ensure_prerequisites()
        image = self.image_dir / f"{platform.triplet}.squashfs"
        if not image.is_file():
            raise BackendExecutionError(
                "Shard image is missing.",
                hint="Download the sandbox shard for this platform before building.",
                context={"operation": "mount", "platform": platform.triplet, "image": str(image)},
            )
        target = self.mount_root / platform.triplet
        target.mkdir(parents=True, exist_ok=True)
        if os.path.ismount(target):
            return target
        self._run(["mount", *self.mount_args, str(image), str(target)], operation="mount")
        return target

    def unmount(self, path: Path) -> None:
        if not os.path.ismount(path):
            return
        self._run(["umount", str(path)], operation="unmount")

    def _run(self, argv: list[str], *, operation: str) -> None:
        cmd = list(argv)
        if self.privilege == "sudo" and os.getuid() != 0:
            cmd.insert(0, "sudo")
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        if result.returncode != 0:
            raise BackendExecutionError(
                f"Shard {operation} failed.",
                hint="Check loop device availability and mount privileges.",
                context={
                    "operation": operation,
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[:2000] if result.stderr else "",
                    "command": " ".join(cmd),
                },
            )

    def _ensure_prerequisites(self) -> None:
        if shutil.which("mount") is None:
            raise BackendExecutionError(
                "Loopback mounting requires `mount` in PATH.",
                hint="Run on a Linux host with util-linux installed.",
                context={"operation": "mount"},
            )


__all__ = ["LoopbackMounter", "ShardHandle", "ShardMounter", "ShardPool"]
