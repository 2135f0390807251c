"""Durable fingerprint cache on sqlite.

Writes are ``INSERT ... ON CONFLICT DO NOTHING`` inside one transaction, so
concurrent writers for the same fingerprint (threads or processes) leave
exactly one row and every reader sees either no row or a complete one.
``put`` returns the stored payload, letting a losing writer adopt the
winner's result.
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import closing
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import structlog
from pydantic import ValidationError

from gitanalyzer.errors import StorageError
from gitanalyzer.models import CacheEntry, ProfileResult

logger = structlog.get_logger()

_SCHEMA = """
CREATE TABLE IF NOT EXISTS profile_cache (
    fingerprint TEXT PRIMARY KEY,
    payload     TEXT NOT NULL,
    created_at  TEXT NOT NULL
);
"""


class KeyValueStore(Protocol):
    """Durable key/value store with first-write-wins puts."""

    def get(self, key: str) -> tuple[str, str] | None:
        """Return (payload, created_at) or None."""
        ...

    def put(self, key: str, value: str, created_at: str, replace: bool = False) -> tuple[str, str]:
        """Store *value* unless a row exists (or overwrite when *replace*); return the stored row."""
        ...


class SqliteStore:
    """KeyValueStore on one sqlite file.  One connection per call."""

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            conn.execute("PRAGMA journal_mode = WAL;")
            conn.executescript(_SCHEMA)

    @property
    def path(self) -> str:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=30.0, isolation_level=None)
        conn.execute("PRAGMA busy_timeout = 30000;")
        return conn

    def get(self, key: str) -> tuple[str, str] | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT payload, created_at FROM profile_cache WHERE fingerprint = ?",
                (key,),
            ).fetchone()
        finally:
            conn.close()
        return (row[0], row[1]) if row else None

    def put(self, key: str, value: str, created_at: str, replace: bool = False) -> tuple[str, str]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if replace:
                    conn.execute(
                        "INSERT INTO profile_cache (fingerprint, payload, created_at) VALUES (?, ?, ?) "
                        "ON CONFLICT(fingerprint) DO UPDATE SET payload = excluded.payload, "
                        "created_at = excluded.created_at",
                        (key, value, created_at),
                    )
                else:
                    conn.execute(
                        "INSERT INTO profile_cache (fingerprint, payload, created_at) VALUES (?, ?, ?) "
                        "ON CONFLICT(fingerprint) DO NOTHING",
                        (key, value, created_at),
                    )
                row = conn.execute(
                    "SELECT payload, created_at FROM profile_cache WHERE fingerprint = ?",
                    (key,),
                ).fetchone()
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()
        return row[0], row[1]


class ProfileCache:
    """Async fingerprint cache of ProfileResults over a KeyValueStore.

    Blocking store calls run in a worker thread so the event loop keeps
    driving in-flight analyses.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @classmethod
    def open(cls, path: str | Path) -> ProfileCache:
        try:
            return cls(SqliteStore(path))
        except sqlite3.Error as exc:
            msg = f"cannot open cache database {path}: {exc}"
            raise StorageError(msg) from exc

    async def get(self, fingerprint: str) -> ProfileResult | None:
        """Return the cached result for *fingerprint*, or None on a miss.

        Raises:
            StorageError: On a store failure or a corrupt payload.
        """
        try:
            row = await asyncio.to_thread(self._store.get, fingerprint)
        except sqlite3.Error as exc:
            msg = f"cache read failed: {exc}"
            raise StorageError(msg) from exc
        if row is None:
            logger.debug("cache miss", fingerprint=fingerprint[:12])
            return None
        entry = self._decode(fingerprint, row)
        logger.info("cache hit", fingerprint=fingerprint[:12], created_at=entry.created_at.isoformat())
        return entry.result

    async def put(self, fingerprint: str, result: ProfileResult, replace: bool = False) -> ProfileResult:
        """Store *result* (first write wins) and return the stored result.

        With *replace* the existing entry is overwritten.

        Raises:
            StorageError: On a store failure or a corrupt stored payload.
        """
        payload = result.model_dump_json()
        created_at = datetime.now(UTC).isoformat()
        try:
            row = await asyncio.to_thread(self._store.put, fingerprint, payload, created_at, replace)
        except sqlite3.Error as exc:
            msg = f"cache write failed: {exc}"
            raise StorageError(msg) from exc
        entry = self._decode(fingerprint, row)
        won = row[0] == payload
        logger.info("cache write", fingerprint=fingerprint[:12], stored=won, replaced=replace)
        return entry.result

    @staticmethod
    def _decode(fingerprint: str, row: tuple[str, str]) -> CacheEntry:
        payload, created_at = row
        try:
            return CacheEntry(
                fingerprint=fingerprint,
                result=ProfileResult.model_validate_json(payload),
                created_at=datetime.fromisoformat(created_at),
            )
        except (ValidationError, ValueError) as exc:
            msg = f"corrupt cache entry for {fingerprint[:12]}: {exc}"
            raise StorageError(msg) from exc
