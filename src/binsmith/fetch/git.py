"""Bare-clone git cache and workspace checkouts."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

from binsmith.errors import BinsmithError, DownloadError, ValidationError


def clone_or_fetch(url: str, destination: str | Path) -> Path:
    """Keep a bare mirror of ``url`` at ``destination`` up to date.

    Git sources are not pinned to a content hash: an existing mirror is
    refreshed with ``git fetch`` on every run.
    """
    target = Path(destination)
    if target.exists():
        _run_git(["fetch", "--quiet", "--tags", "origin"], cwd=target, error=DownloadError)
        return target
    target.parent.mkdir(parents=True, exist_ok=True)
    staging = target.with_name(f".{target.name}.partial")
    if staging.exists():
        shutil.rmtree(staging)
    try:
        _run_git(
            ["clone", "--quiet", "--bare", url, str(staging)],
            error=DownloadError,
        )
        _run_git(
            ["config", "remote.origin.fetch", "+refs/heads/*:refs/heads/*"],
            cwd=staging,
            error=DownloadError,
        )
        staging.rename(target)
    finally:
        if staging.exists():
            shutil.rmtree(staging, ignore_errors=True)
    return target


def checkout(mirror: str | Path, destination: str | Path, *, ref: str | None = None) -> Path:
    """Check out ``ref`` (default branch when None) from a bare mirror."""
    target = Path(destination)
    _run_git(["clone", "--quiet", str(mirror), str(target)], error=ValidationError)
    if ref is not None:
        _run_git(["checkout", "--quiet", ref], cwd=target, error=ValidationError)
    return target


def head_commit(repo: str | Path) -> str:
    return _run_git(["rev-parse", "HEAD"], cwd=Path(repo), error=ValidationError)


def _run_git(
    argv: list[str],
    cwd: Path | None = None,
    *,
    error: type[DownloadError] | type[ValidationError],
) -> str:
    command = ["git", *argv]
    completed = subprocess.run(
        command,
        cwd=cwd,
        check=False,
        text=True,
        capture_output=True,
    )
    if completed.returncode != 0:
        exc: BinsmithError = error(
            "Git command failed.",
            hint="Inspect repository URL/ref inputs and git installation.",
            context={
                "operation": "git",
                "argv": " ".join(command),
                "stderr": completed.stderr.strip(),
            },
        )
        raise exc
    return completed.stdout.strip()
