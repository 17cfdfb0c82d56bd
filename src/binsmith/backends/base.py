"""Protocols for sandbox execution and post-build auditing."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from binsmith.platforms import Platform

if TYPE_CHECKING:
    from binsmith.workspace import Workspace


@dataclass(frozen=True, slots=True)
class ExecOptions:
    verbose: bool = False
    log_path: Path | None = None


class SandboxExecutor(Protocol):
    def execute(
        self,
        script: str,
        workspace: Workspace,
        platform: Platform,
        options: ExecOptions,
    ) -> int:
        """Run ``script`` against the workspace prefix and return its exit code."""

    def enter_interactive_shell(self, workspace: Workspace, platform: Platform) -> None:
        """Open an interactive shell inside the same sandbox for debugging."""


class Auditor(Protocol):
    def audit(self, prefix: Path, platform: Platform, ignore_manifests: Sequence[Path]) -> None:
        """Inspect and patch built binaries; files in ``ignore_manifests`` are skipped."""


@dataclass(frozen=True, slots=True)
class NoAudit:
    """Auditor that accepts every prefix unchanged."""

    def audit(self, prefix: Path, platform: Platform, ignore_manifests: Sequence[Path]) -> None:
        return None


__all__ = ["Auditor", "ExecOptions", "NoAudit", "SandboxExecutor"]
