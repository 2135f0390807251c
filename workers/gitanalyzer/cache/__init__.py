"""Fingerprint cache: content keys and the durable profile store."""

from gitanalyzer.cache.fingerprint import commit_set_hash, compute_fingerprint
from gitanalyzer.cache.store import KeyValueStore, ProfileCache, SqliteStore

__all__ = [
    "KeyValueStore",
    "ProfileCache",
    "SqliteStore",
    "commit_set_hash",
    "compute_fingerprint",
]
