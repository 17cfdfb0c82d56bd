"""Integrity-checked input retrieval."""

from .git import checkout, clone_or_fetch, head_commit
from .http import as_url, cache_slot, download, download_verify, sha256_file, text_key, verify

__all__ = [
    "as_url",
    "cache_slot",
    "checkout",
    "clone_or_fetch",
    "download",
    "download_verify",
    "head_commit",
    "sha256_file",
    "text_key",
    "verify",
]
