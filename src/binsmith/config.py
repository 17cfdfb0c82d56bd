"""Run configuration and release-target discovery."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from binsmith.platforms import Platform

PLACEHOLDER_REPO = "<repo owner>/<repo name>"
PLACEHOLDER_TAG = "<tag>"


@dataclass(frozen=True, slots=True)
class BuildConfig:
    root_dir: Path
    build_dir: Path
    downloads_dir: Path
    products_dir: Path
    max_mounts: int = 8
    heartbeat_interval: float = 4.0
    source_workers: int = 4

    @classmethod
    def from_root(cls, root: str | Path, **overrides: object) -> BuildConfig:
        root_dir = Path(root).resolve()
        return cls(
            root_dir=root_dir,
            build_dir=root_dir / "build",
            downloads_dir=root_dir / "downloads",
            products_dir=root_dir / "products",
            **overrides,  # type: ignore[arg-type]
        )


@dataclass(frozen=True, slots=True)
class ReleaseTarget:
    repo: str
    tag: str

    @property
    def bin_path(self) -> str:
        return f"https://github.com/{self.repo}/releases/download/{self.tag}"


@dataclass(frozen=True, slots=True)
class RunOptions:
    verbose: bool = False
    debug: bool = False
    only_manifest: bool = False
    part: tuple[int, int] | None = None
    platforms: tuple[Platform, ...] | None = None

    @property
    def writes_manifest(self) -> bool:
        """Sharded or overridden runs leave manifest generation to a later merge."""
        if self.only_manifest:
            return True
        return self.part is None and self.platforms is None


@dataclass(frozen=True, slots=True)
class DiscoveryInputs:
    repo: str | None = None
    tag: str | None = None
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    cwd: Path = field(default_factory=Path.cwd)


def discover_release_target(inputs: DiscoveryInputs | None = None) -> ReleaseTarget:
    """Resolve repo/tag: explicit > CI environment > local git > placeholder."""
    inputs = inputs or DiscoveryInputs()
    repo = (
        inputs.repo
        or _env_repo(inputs.env)
        or _git_origin_repo(inputs.cwd)
        or PLACEHOLDER_REPO
    )
    tag = inputs.tag or _env_tag(inputs.env) or _git_head_tag(inputs.cwd) or PLACEHOLDER_TAG
    return ReleaseTarget(repo=repo, tag=tag)


def _get_env(env: Mapping[str, str], key: str) -> str | None:
    value = env.get(key)
    return value or None


def _env_repo(env: Mapping[str, str]) -> str | None:
    slug = _get_env(env, "TRAVIS_REPO_SLUG")
    if slug:
        return slug
    owner = _get_env(env, "CI_REPO_OWNER")
    name = _get_env(env, "CI_REPO_NAME")
    if owner and name:
        return f"{owner}/{name}"
    return _get_env(env, "GITHUB_REPOSITORY")


def _env_tag(env: Mapping[str, str]) -> str | None:
    tag = _get_env(env, "TRAVIS_TAG") or _get_env(env, "CI_COMMIT_TAG")
    if tag:
        return tag
    if _get_env(env, "GITHUB_REF_TYPE") == "tag":
        return _get_env(env, "GITHUB_REF_NAME")
    return None


def repo_from_remote_url(url: str) -> str | None:
    """Turn ``git@host:owner/name.git`` or ``https://host/owner/name`` into ``owner/name``."""
    trimmed = url.strip().rstrip("/")
    if not trimmed:
        return None
    name = trimmed.rsplit("/", 1)[-1]
    parent = trimmed.rsplit("/", 1)[0] if "/" in trimmed else ""
    owner = parent.rsplit("/", 1)[-1]
    if ":" in owner:
        owner = owner.rsplit(":", 1)[-1]
    name = name.removesuffix(".git")
    if not owner or not name:
        return None
    return f"{owner}/{name}"


def _git_origin_repo(cwd: Path) -> str | None:
    url = _git_output(["remote", "get-url", "origin"], cwd=cwd)
    return repo_from_remote_url(url) if url else None


def _git_head_tag(cwd: Path) -> str | None:
    tags = _git_output(["tag", "--points-at", "HEAD"], cwd=cwd)
    if not tags:
        return None
    return tags.splitlines()[0].strip() or None


def _git_output(argv: list[str], *, cwd: Path) -> str | None:
    try:
        completed = subprocess.run(
            ["git", *argv],
            cwd=cwd,
            check=False,
            text=True,
            capture_output=True,
        )
    except FileNotFoundError:
        return None
    if completed.returncode != 0:
        return None
    return completed.stdout.strip() or None


__all__ = [
    "BuildConfig",
    "DiscoveryInputs",
    "PLACEHOLDER_REPO",
    "PLACEHOLDER_TAG",
    "ReleaseTarget",
    "RunOptions",
    "discover_release_target",
    "repo_from_remote_url",
]
