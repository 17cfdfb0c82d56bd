import hashlib
import subprocess
import tarfile
from pathlib import Path

import pytest

from binsmith import sources as sources_module
from binsmith.errors import HashMismatch, ValidationError
from binsmith.fetch.http import cache_slot, text_key
from binsmith.models import GitSource, LocalDirectory, RemoteArchive
from binsmith.sources import SourceResolver


def _resolver(tmp_path: Path) -> SourceResolver:
    return SourceResolver(tmp_path / "downloads", tmp_path / "scratch")


def _source_file(tmp_path: Path, name: str, payload: bytes) -> tuple[Path, str]:
    path = tmp_path / "upstream" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    return path, hashlib.sha256(payload).hexdigest()


def test_resolving_twice_against_cache_yields_same_hash(tmp_path: Path) -> None:
    path, digest = _source_file(tmp_path, "foo-1.0.tar.gz", b"archive bytes")
    spec = RemoteArchive(path.as_uri(), digest)

    first = _resolver(tmp_path).resolve(spec)
    path.write_bytes(b"upstream changed")
    second = _resolver(tmp_path).resolve(spec)

    assert first.sha256 == second.sha256 == digest
    assert first.path == second.path == cache_slot(tmp_path / "downloads", digest, "foo-1.0.tar.gz")
    assert first.kind == "archive"


def test_mismatching_download_raises_and_leaves_no_cache_entry(tmp_path: Path) -> None:
    path, _ = _source_file(tmp_path, "foo-1.0.tar.gz", b"archive bytes")

    with pytest.raises(HashMismatch):
        _resolver(tmp_path).resolve(RemoteArchive(path.as_uri(), "f" * 64))

    assert [p for p in (tmp_path / "downloads").rglob("*") if p.is_file()] == []


def test_local_file_path_is_verified_in_place(tmp_path: Path) -> None:
    path, digest = _source_file(tmp_path, "patch.diff", b"--- a\n+++ b\n")

    resolved = _resolver(tmp_path).resolve(RemoteArchive(str(path), digest))

    assert resolved.path == path.resolve()
    assert resolved.kind == "file"
    assert not (tmp_path / "downloads" / "patch.diff").exists()


def test_remote_archive_requires_hash(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        _resolver(tmp_path).resolve(RemoteArchive("https://example.invalid/foo.tar.gz", ""))


def test_resolve_all_preserves_order_and_fetches_duplicates_once(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    first, first_digest = _source_file(tmp_path, "a.tar.gz", b"first")
    second, second_digest = _source_file(tmp_path, "b.tar.gz", b"second")
    calls: list[str] = []
    real_download_verify = sources_module.download_verify

    def counting(url: str, sha256: str, destination: Path) -> Path:
        calls.append(url)
        return real_download_verify(url, sha256, destination)

    monkeypatch.setattr(sources_module, "download_verify", counting)
    spec_a = RemoteArchive(first.as_uri(), first_digest)
    spec_b = RemoteArchive(second.as_uri(), second_digest)

    resolved = _resolver(tmp_path).resolve_all([spec_a, spec_b, spec_a, spec_a])

    assert [r.sha256 for r in resolved] == [first_digest, second_digest, first_digest, first_digest]
    assert sorted(calls) == sorted([spec_a.url, spec_b.url])


def test_local_directory_is_archived_deterministically(tmp_path: Path) -> None:
    tree = tmp_path / "bundled"
    (tree / "patches").mkdir(parents=True)
    (tree / "patches" / "fix.patch").write_text("diff\n", encoding="utf-8")
    (tree / "README").write_text("readme\n", encoding="utf-8")

    first = SourceResolver(tmp_path / "d1", tmp_path / "s1").resolve(LocalDirectory(tree))
    second = SourceResolver(tmp_path / "d2", tmp_path / "s2").resolve(LocalDirectory(tree))

    assert first.kind == "archive"
    assert first.sha256 == second.sha256
    assert first.path.name == "bundled.tar.gz"


def test_missing_local_directory_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        _resolver(tmp_path).resolve(LocalDirectory(tmp_path / "absent"))


def test_git_source_resolves_unpinned_mirror(tmp_path: Path) -> None:
    repo = tmp_path / "upstream" / "project"
    repo.mkdir(parents=True)
    for argv in (
        ["init"],
        ["config", "user.email", "binsmith@example.com"],
        ["config", "user.name", "Binsmith Test"],
    ):
        subprocess.run(["git", *argv], cwd=repo, check=True, capture_output=True)
    (repo / "main.c").write_text("int main(void) { return 0; }\n", encoding="utf-8")
    subprocess.run(["git", "add", "main.c"], cwd=repo, check=True, capture_output=True)
    subprocess.run(["git", "commit", "-m", "init"], cwd=repo, check=True, capture_output=True)

    resolved = _resolver(tmp_path).resolve(GitSource(str(repo), ref="HEAD"))

    assert resolved.kind == "git"
    assert resolved.sha256 is None
    assert resolved.ref == "HEAD"
    mirror_root = tmp_path / "downloads" / "git"
    assert resolved.path == cache_slot(mirror_root, text_key(str(repo)), "project")
    assert (resolved.path / "HEAD").is_file()


def test_same_named_local_directories_keep_their_own_contents(tmp_path: Path) -> None:
    for owner in ("a", "b"):
        tree = tmp_path / owner / "src"
        tree.mkdir(parents=True)
        (tree / f"from_{owner}.txt").write_text(f"{owner}\n", encoding="utf-8")

    first, second = _resolver(tmp_path).resolve_all(
        [LocalDirectory(tmp_path / "a" / "src"), LocalDirectory(tmp_path / "b" / "src")]
    )

    assert first.path != second.path
    assert first.path.name == second.path.name == "src.tar.gz"
    assert first.sha256 != second.sha256
    for resolved, owner in ((first, "a"), (second, "b")):
        assert hashlib.sha256(resolved.path.read_bytes()).hexdigest() == resolved.sha256
        with tarfile.open(resolved.path) as tar:
            assert tar.getnames() == [f"from_{owner}.txt"]


def test_same_named_archives_from_different_urls_do_not_collide(tmp_path: Path) -> None:
    first_path, first_digest = _source_file(tmp_path / "mirror1", "foo.tar.gz", b"one")
    second_path, second_digest = _source_file(tmp_path / "mirror2", "foo.tar.gz", b"two")

    first, second = _resolver(tmp_path).resolve_all(
        [
            RemoteArchive(first_path.as_uri(), first_digest),
            RemoteArchive(second_path.as_uri(), second_digest),
        ]
    )

    assert first.path.read_bytes() == b"one"
    assert second.path.read_bytes() == b"two"
