import json
from pathlib import Path

import cbor2

from binsmith.errors import (
    BackendExecutionError,
    BuildScriptFailed,
    DownloadError,
    ErrorCode,
    HashMismatch,
    ManifestResolutionError,
    PartitionArgumentError,
    ProductMissing,
    ResourceExhausted,
    ValidationError,
)
from binsmith.models import ArtifactRecord, BuildManifest
from binsmith.products import LibraryProduct


def test_error_codes_are_stable_and_machine_readable() -> None:
    errors = [
        ValidationError("bad input"),
        DownloadError("unreachable"),
        HashMismatch("drift"),
        ResourceExhausted("full"),
        BackendExecutionError("no bash"),
        BuildScriptFailed(2),
        ProductMissing("missing"),
        ManifestResolutionError("no manifest"),
        PartitionArgumentError("bad part"),
    ]
    assert [error.code for error in errors] == [
        ErrorCode.VALIDATION.value,
        ErrorCode.DOWNLOAD.value,
        ErrorCode.HASH_MISMATCH.value,
        ErrorCode.RESOURCE_EXHAUSTED.value,
        ErrorCode.BACKEND_EXECUTION.value,
        ErrorCode.BUILD_SCRIPT_FAILED.value,
        ErrorCode.PRODUCT_MISSING.value,
        ErrorCode.MANIFEST_RESOLUTION.value,
        ErrorCode.PARTITION_ARGUMENT.value,
    ]


def test_error_to_dict_includes_hint_and_context() -> None:
    error = BuildScriptFailed(3, hint="use --debug", context={"platform": "x86_64-linux-gnu"})
    payload = error.to_dict()

    assert error.exit_code == 3
    assert payload["code"] == "E_BUILD_SCRIPT_FAILED"
    assert payload["hint"] == "use --debug"
    assert payload["context"] == {"platform": "x86_64-linux-gnu"}
    assert "exit code 3" in str(error)


def test_error_context_is_mutable_for_enrichment() -> None:
    error = DownloadError("unreachable", context={"url": "https://example.invalid/x"})
    error.context["phase"] = "sources"

    assert "phase: sources" in str(error)


def _manifest() -> BuildManifest:
    return BuildManifest(
        name="libfoo",
        version="1.0.0",
        products=(LibraryProduct(("libfoo",), "libfoo"),),
        artifacts={
            "x86_64-linux-gnu": ArtifactRecord("libfoo.v1.0.0.x86_64-linux-gnu.tar.gz", "b" * 64),
            "aarch64-linux-gnu": ArtifactRecord("libfoo.v1.0.0.aarch64-linux-gnu.tar.gz", "a" * 64),
        },
        bin_path="https://github.com/acme/libfoo/releases/download/v1.0.0",
    )


def test_download_info_is_sorted_by_triplet_with_full_urls() -> None:
    info = _manifest().download_info()

    assert list(info) == ["aarch64-linux-gnu", "x86_64-linux-gnu"]
    assert info["aarch64-linux-gnu"] == (
        "https://github.com/acme/libfoo/releases/download/v1.0.0/"
        "libfoo.v1.0.0.aarch64-linux-gnu.tar.gz",
        "a" * 64,
    )


def test_manifest_json_and_cbor_exports_are_deterministic(tmp_path: Path) -> None:
    manifest = _manifest()

    json_path = tmp_path / "index.json"
    text = manifest.to_json(json_path)
    assert json_path.read_text(encoding="utf-8") == text
    assert json.loads(text)["artifacts"]["x86_64-linux-gnu"]["sha256"] == "b" * 64

    first = manifest.to_cbor()
    second = manifest.to_cbor(tmp_path / "index.cbor")
    assert first == second
    decoded = cbor2.loads(first)
    assert decoded["products"] == ["LibraryProduct(('libfoo',), 'libfoo')"]
    assert decoded["schema_version"] == 1
