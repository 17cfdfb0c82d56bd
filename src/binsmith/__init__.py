"""Public package entrypoint for binsmith."""

from .cli import build_tarballs
from .config import BuildConfig, ReleaseTarget, RunOptions, discover_release_target
from .dependencies import Dependency
from .errors import (
    BackendExecutionError,
    BinsmithError,
    BuildScriptFailed,
    DownloadError,
    HashMismatch,
    ManifestResolutionError,
    PartitionArgumentError,
    ProductMissing,
    ResourceExhausted,
    UnknownPlatformInAsset,
    ValidationError,
)
from .models import BuildManifest, GitSource, LocalDirectory, Recipe, RemoteArchive
from .orchestrator import Orchestrator, RunResult, RunState
from .platforms import Platform, parse_triplet, supported_platforms
from .products import ExecutableProduct, FileProduct, LibraryProduct

__all__ = [
    "BackendExecutionError",
    "BinsmithError",
    "BuildConfig",
    "BuildManifest",
    "BuildScriptFailed",
    "Dependency",
    "DownloadError",
    "ExecutableProduct",
    "FileProduct",
    "GitSource",
    "HashMismatch",
    "LibraryProduct",
    "LocalDirectory",
    "ManifestResolutionError",
    "Orchestrator",
    "PartitionArgumentError",
    "Platform",
    "ProductMissing",
    "Recipe",
    "ReleaseTarget",
    "RemoteArchive",
    "ResourceExhausted",
    "RunOptions",
    "RunResult",
    "RunState",
    "UnknownPlatformInAsset",
    "ValidationError",
    "build_tarballs",
    "discover_release_target",
    "parse_triplet",
    "supported_platforms",
]
