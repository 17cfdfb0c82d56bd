"""Rebuild the artifact map from assets already published on a release."""

from __future__ import annotations

import json
import tempfile
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
from urllib.error import URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from binsmith.errors import DownloadError, UnknownPlatformInAsset
from binsmith.fetch.http import download, sha256_file
from binsmith.manifest import is_manifest_asset
from binsmith.models import ArtifactRecord
from binsmith.observability import StructuredLogger
from binsmith.platforms import extract_platform


@dataclass(frozen=True, slots=True)
class ReleaseAsset:
    name: str
    url: str


class ReleaseHost(Protocol):
    def list_assets(self, repo: str, tag: str) -> list[ReleaseAsset]:
        """Return every asset attached to ``repo``'s release ``tag``."""

    def download(self, url: str, destination: Path) -> Path:
        """Fetch one asset to ``destination``."""


@dataclass(slots=True)
class GitHubReleases:
    token: str | None = None
    api_base: str = "https://api.github.com"
    headers: dict[str, str] = field(
        default_factory=lambda: {"Accept": "application/vnd.github+json"}
    )

    def _headers(self) -> dict[str, str]:
        headers = dict(self.headers)
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def list_assets(self, repo: str, tag: str) -> list[ReleaseAsset]:
        url = f"{self.api_base}/repos/{repo}/releases/tags/{quote(tag, safe='')}"
        request = Request(url, headers=self._headers())
        try:
            with urlopen(request) as response:  # noqa: S310 - fixed https endpoint
                payload = json.loads(response.read().decode("utf-8"))
        except (URLError, OSError, json.JSONDecodeError) as exc:
            raise DownloadError(
                "Could not list release assets.",
                hint="Check the repository slug, tag and GITHUB_TOKEN.",
                context={"operation": "list_assets", "repo": repo, "tag": tag, "reason": str(exc)},
            ) from exc
        return [
            ReleaseAsset(name=asset["name"], url=asset["browser_download_url"])
            for asset in payload.get("assets", [])
        ]

    def download(self, url: str, destination: Path) -> Path:
        headers = {"Accept": "application/octet-stream"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return download(url, destination, headers=headers)


def reconstruct_artifacts(
    host: ReleaseHost,
    repo: str,
    tag: str,
    *,
    name_filter: str | None = None,
    logger: StructuredLogger | None = None,
) -> dict[str, ArtifactRecord]:
    """Download and hash every platform tarball on the release, keyed by triplet."""
    log = logger or StructuredLogger()
    artifacts: dict[str, ArtifactRecord] = {}
    with tempfile.TemporaryDirectory(prefix="binsmith-release-") as scratch:
        for asset in host.list_assets(repo, tag):
            if is_manifest_asset(asset.name):
                continue
            platform = extract_platform(asset.name)
            if platform is None:
                message = f"Could not extract the platform from {asset.name}; skipping."
                warnings.warn(message, UnknownPlatformInAsset, stacklevel=2)
                log.log(
                    operation="reconstruct",
                    platform=None,
                    phase="manifest",
                    level="warning",
                    message=message,
                    extra={"asset": asset.name},
                )
                continue
            if name_filter is not None and name_filter not in asset.name:
                continue

            local = host.download(asset.url, Path(scratch) / asset.name)
            record = ArtifactRecord(file_name=asset.name, sha256=sha256_file(local))
            artifacts[platform.triplet] = record
            log.log(
                operation="reconstruct",
                platform=platform.triplet,
                phase="manifest",
                message=f"Hashed release asset {asset.name}.",
                extra={"sha256": record.sha256},
            )
    return artifacts


__all__ = ["GitHubReleases", "ReleaseAsset", "ReleaseHost", "reconstruct_artifacts"]
