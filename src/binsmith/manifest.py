"""Consumer-facing manifest document generation and parsing."""

from __future__ import annotations

import ast
from pathlib import Path

from binsmith.errors import ManifestResolutionError
from binsmith.models import BuildManifest

_HEADER = '''\
"""Binary provider script for {name} v{version}; generated by binsmith."""

from __future__ import annotations

import sys
from pathlib import Path

from binsmith.observability import StructuredLogger
from binsmith.products import ExecutableProduct, FileProduct, LibraryProduct
from binsmith.provider import host_platform, install, isinstalled, satisfied, write_deps_file

# Parse some basic command-line arguments
verbose = "--verbose" in sys.argv
_args = [arg for arg in sys.argv[1:] if arg != "--verbose"]
prefix = Path(_args[0]) if _args else Path(__file__).resolve().parent / "usr"

'''

_FOOTER = '''

def main() -> None:
    # Install unsatisfied or updated dependencies:
    platform = host_platform()
    unsatisfied = any(not satisfied(p, prefix=prefix, platform=platform) for p in products)
    if platform.triplet in download_info:
        url, tarball_hash = download_info[platform.triplet]
        if unsatisfied or not isinstalled(url, tarball_hash, prefix=prefix):
            # Download and install binaries
            logger = StructuredLogger(echo=sys.stdout) if verbose else None
            install(url, tarball_hash, prefix=prefix, force=True, logger=logger)
    elif unsatisfied:
        # If we don't have a compatible tarball to download, complain.
        # Alternatively, you could attempt to install from a separate provider,
        # build from source or something even more ambitious here.
        raise RuntimeError(f"Your platform {platform.triplet} is not supported by this package!")

    # Write out a deps.py file that will contain mappings for our products
    deps_path = Path(__file__).resolve().parent / "deps.py"
    write_deps_file(deps_path, products, prefix=prefix, platform=platform)


if __name__ == "__main__":
    main()
'''


def render_manifest(manifest: BuildManifest) -> str:
    parts = [_HEADER.format(name=manifest.name, version=manifest.version)]

    parts.append("products = [\n")
    for product in manifest.products:
        parts.append(f"    {product.render()},\n")
    parts.append("]\n\n")

    parts.append("# Download binaries from hosted location\n")
    parts.append(f"bin_prefix = {manifest.bin_path!r}\n\n")

    parts.append("# Listing of files generated by binsmith:\n")
    parts.append("download_info = {\n")
    for triplet, (url, sha256) in manifest.download_info().items():
        parts.append(f"    {triplet!r}: ({url!r}, {sha256!r}),\n")
    parts.append("}\n")

    parts.append(_FOOTER)
    return "".join(parts)


def manifest_filename(name: str, version: str) -> str:
    return f"build_{name}.v{version}.py"


def index_filename(name: str, version: str) -> str:
    return f"{name}.v{version}.artifacts.cbor"


def is_manifest_asset(filename: str) -> bool:
    if filename.startswith("build_") and filename.endswith(".py"):
        return True
    return filename.endswith(".artifacts.cbor")


def write_manifest(products_dir: str | Path, manifest: BuildManifest) -> Path:
    """Write the consumer document and its canonical CBOR artifact index."""
    output_dir = Path(products_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    document = output_dir / manifest_filename(manifest.name, manifest.version)
    document.write_text(render_manifest(manifest), encoding="utf-8")
    manifest.to_cbor(output_dir / index_filename(manifest.name, manifest.version))
    return document


def read_download_info(text: str, *, source: str = "<manifest>") -> dict[str, tuple[str, str]]:
    """Extract the ``download_info`` literal from a manifest document without running it."""
    try:
        tree = ast.parse(text, filename=source)
    except SyntaxError as exc:
        raise ManifestResolutionError(
            "Manifest document is not valid Python.",
            hint="Regenerate the dependency's manifest document.",
            context={"operation": "read_manifest", "source": source, "reason": str(exc)},
        ) from exc

    for node in tree.body:
        if not isinstance(node, ast.Assign):
            continue
        if not any(isinstance(t, ast.Name) and t.id == "download_info" for t in node.targets):
            continue
        try:
            value = ast.literal_eval(node.value)
        except ValueError as exc:
            raise ManifestResolutionError(
                "`download_info` is not a literal mapping.",
                hint="Only manifest documents generated by binsmith can be resolved.",
                context={"operation": "read_manifest", "source": source},
            ) from exc
        return _validated(value, source=source)

    raise ManifestResolutionError(
        "Manifest document has no `download_info` table.",
        hint="Only manifest documents generated by binsmith can be resolved.",
        context={"operation": "read_manifest", "source": source},
    )


def _validated(value: object, *, source: str) -> dict[str, tuple[str, str]]:
    if not isinstance(value, dict):
        raise ManifestResolutionError(
            "`download_info` must be a mapping.",
            context={"operation": "read_manifest", "source": source},
        )
    parsed: dict[str, tuple[str, str]] = {}
    for key, entry in value.items():
        if (
            not isinstance(key, str)
            or not isinstance(entry, tuple)
            or len(entry) != 2
            or not all(isinstance(item, str) for item in entry)
        ):
            raise ManifestResolutionError(
                "Invalid `download_info` entry.",
                context={"operation": "read_manifest", "source": source, "key": str(key)},
            )
        parsed[key] = (entry[0], entry[1])
    return parsed


__all__ = [
    "index_filename",
    "is_manifest_asset",
    "manifest_filename",
    "read_download_info",
    "render_manifest",
    "write_manifest",
]
