from pathlib import Path

import pytest

from binsmith.dependencies import Dependency, install_dependencies, purge_dependencies
from binsmith.errors import ManifestResolutionError, ProductMissing, ValidationError
from binsmith.fetch.http import cache_slot
from binsmith.manifest import write_manifest
from binsmith.models import ArtifactRecord, BuildManifest
from binsmith.platforms import Platform
from binsmith.products import LibraryProduct
from binsmith.provider import install, isinstalled, manifest_path_for, write_deps_file

LINUX64 = Platform("x86_64", "linux", "glibc")
ARM64 = Platform("aarch64", "linux", "glibc")


def _publish_libbar(tmp_path: Path, make_tarball) -> Path:
    tarball, digest = make_tarball(
        f"libbar.v1.0.0.{LINUX64.triplet}.tar.gz",
        {"lib/libbar.so": "bar\n", "include/bar.h": "int bar(void);\n"},
    )
    manifest = BuildManifest(
        name="libbar",
        version="1.0.0",
        products=(LibraryProduct(("libbar",), "libbar"),),
        artifacts={LINUX64.triplet: ArtifactRecord(tarball.name, digest)},
        bin_path=tarball.parent.as_uri(),
    )
    return write_manifest(tmp_path / "published", manifest)


def _files(prefix: Path) -> set[str]:
    return {p.relative_to(prefix).as_posix() for p in prefix.rglob("*") if p.is_file()}


def test_descriptor_is_pure(tmp_path: Path, make_tarball) -> None:
    document = _publish_libbar(tmp_path, make_tarball)
    prefix = tmp_path / "prefix"
    prefix.mkdir()

    desc = Dependency("libbar", str(document)).descriptor(LINUX64, prefix)

    assert desc.name == "libbar"
    assert desc.url.endswith(f"libbar.v1.0.0.{LINUX64.triplet}.tar.gz")
    assert desc.manifest_path == prefix / "manifests" / f"libbar.v1.0.0.{LINUX64.triplet}.list"
    assert list(prefix.iterdir()) == []


def test_descriptor_accepts_file_url(tmp_path: Path, make_tarball) -> None:
    document = _publish_libbar(tmp_path, make_tarball)

    desc = Dependency("libbar", document.as_uri()).descriptor(LINUX64, tmp_path / "prefix")

    assert desc.sha256


def test_install_then_purge_removes_exactly_the_dependency(tmp_path: Path, make_tarball) -> None:
    document = _publish_libbar(tmp_path, make_tarball)
    prefix = tmp_path / "prefix"
    (prefix / "lib").mkdir(parents=True)
    (prefix / "lib" / "libfoo.so").write_text("foo\n", encoding="utf-8")
    (prefix / "share").mkdir()
    (prefix / "share" / "notes.txt").write_text("keep\n", encoding="utf-8")
    dependencies = [Dependency("libbar", str(document))]

    manifests = install_dependencies(prefix, dependencies, LINUX64)
    assert manifests == [manifest_path_for(f"libbar.v1.0.0.{LINUX64.triplet}.tar.gz", prefix)]
    assert (prefix / "include" / "bar.h").is_file()

    removed = purge_dependencies(prefix, dependencies, LINUX64)

    assert sorted(p.name for p in removed) == ["bar.h", "libbar.so"]
    assert not (prefix / "include").exists()
    assert not (prefix / "manifests").exists()
    assert _files(prefix) - {f"downloads/libbar.v1.0.0.{LINUX64.triplet}.tar.gz"} == {
        "lib/libfoo.so",
        "share/notes.txt",
    }


def test_purge_without_manifest_is_fatal(tmp_path: Path, make_tarball) -> None:
    document = _publish_libbar(tmp_path, make_tarball)
    prefix = tmp_path / "prefix"
    prefix.mkdir()

    with pytest.raises(ManifestResolutionError) as excinfo:
        purge_dependencies(prefix, [Dependency("libbar", str(document))], LINUX64)

    assert excinfo.value.context["dependency"] == "libbar"


def test_missing_platform_is_manifest_resolution_error(tmp_path: Path, make_tarball) -> None:
    document = _publish_libbar(tmp_path, make_tarball)

    with pytest.raises(ManifestResolutionError) as excinfo:
        Dependency("libbar", str(document)).descriptor(ARM64, tmp_path / "prefix")

    assert excinfo.value.context["available"] == LINUX64.triplet


def test_unreadable_manifest_source_is_manifest_resolution_error(tmp_path: Path) -> None:
    dependency = Dependency("libbar", str(tmp_path / "missing.py"))

    with pytest.raises(ManifestResolutionError):
        dependency.descriptor(LINUX64, tmp_path / "prefix")


def test_provider_install_tracks_installation(tmp_path: Path, make_tarball) -> None:
    tarball, digest = make_tarball(
        "libbaz.v2.0.0.x86_64-linux-gnu.tar.gz", {"lib/libbaz.so": "baz"}
    )
    prefix = tmp_path / "prefix"

    install(tarball.as_uri(), digest, prefix=prefix)
    assert isinstalled(tarball.as_uri(), digest, prefix=prefix)
    assert not isinstalled(tarball.as_uri(), "0" * 64, prefix=prefix)

    with pytest.raises(ValidationError):
        install(tarball.as_uri(), digest, prefix=prefix)

    (prefix / "lib" / "libbaz.so").unlink()
    assert not isinstalled(tarball.as_uri(), digest, prefix=prefix)
    install(tarball.as_uri(), digest, prefix=prefix, force=True)
    assert (prefix / "lib" / "libbaz.so").is_file()


def test_provider_install_reuses_shared_cache(tmp_path: Path, make_tarball) -> None:
    tarball, digest = make_tarball(
        "libbaz.v2.0.0.x86_64-linux-gnu.tar.gz", {"lib/libbaz.so": "baz"}
    )
    cache = tmp_path / "cache"

    install(tarball.as_uri(), digest, prefix=tmp_path / "first", cache_dir=cache)
    tarball.unlink()
    install(tarball.as_uri(), digest, prefix=tmp_path / "second", cache_dir=cache)

    assert cache_slot(cache, digest, tarball.name).is_file()
    assert (tmp_path / "second" / "lib" / "libbaz.so").read_text(encoding="utf-8") == "baz"
    assert isinstalled(tarball.as_uri(), digest, prefix=tmp_path / "second")


def test_write_deps_file_maps_products_to_paths(tmp_path: Path) -> None:
    prefix = tmp_path / "prefix"
    (prefix / "lib").mkdir(parents=True)
    (prefix / "lib" / "libbaz.so.1").write_text("baz", encoding="utf-8")
    product = LibraryProduct(("libbaz",), "libbaz")

    deps = write_deps_file(tmp_path / "deps.py", [product], prefix=prefix, platform=LINUX64)

    text = deps.read_text(encoding="utf-8")
    assert f"libbaz = {str((prefix / 'lib' / 'libbaz.so.1').resolve())!r}" in text

    with pytest.raises(ProductMissing):
        write_deps_file(
            tmp_path / "deps.py",
            [LibraryProduct(("libqux",), "libqux")],
            prefix=prefix,
            platform=LINUX64,
        )
