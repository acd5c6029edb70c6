# quotesync/offline_store.py
"""SQLite-backed key/value store holding the pending write queue and caches."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Iterable

from .errors import StorageError
from .models import ENVELOPE_VERSION, PendingWrite, utcnow_iso

QUEUE_KEY = "offlineQuote"
PRODUCTS_KEY = "products"


def _legacy_id(index: int, payload: dict) -> str:
    """Stable id for an entry of the old bare-array queue."""
    seed = f"{index}:{json.dumps(payload, sort_keys=True)}"
    return uuid.uuid5(uuid.NAMESPACE_OID, seed).hex


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    for stmt in ("PRAGMA journal_mode=WAL", "PRAGMA synchronous=NORMAL"):
        try:
            conn.execute(stmt)
        except sqlite3.OperationalError:
            # Ignore failures on read-only or in-memory connections.
            pass


class DurableQueueStore:
    """Pending writes under ``QUEUE_KEY`` plus cached read-models.

    Every queue mutation runs under one re-entrant lock, so an append racing
    a drain's ``remove`` cannot lose an entry.  Reads fail open: an unreadable
    or corrupt value is logged and treated as empty, and the next successful
    write overwrites it.  Writes raise ``StorageError``.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.lock = threading.RLock()
        self.init_db()

    def init_db(self) -> None:
        parent = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(parent, exist_ok=True)
        try:
            conn = sqlite3.connect(self.path)
            _apply_pragmas(conn)
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT
                )
                """
            )
            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open offline store: {e}") from e

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(self.path, timeout=5)
        _apply_pragmas(conn)
        try:
            yield conn
        finally:
            conn.close()

    # raw key/value access

    def _read(self, key: str) -> str | None:
        try:
            with self._conn() as conn:
                row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            logging.warning("offline store read %s failed: %s", key, e)
            return None
        return row[0] if row else None

    def _write(self, key: str, value: str) -> None:
        try:
            with self._conn() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO kv(key, value, updated_at) VALUES (?, ?, ?)",
                    (key, value, utcnow_iso()),
                )
                conn.commit()
        except sqlite3.Error as e:
            logging.error("offline store write %s failed: %s", key, e)
            raise StorageError(f"Failed to write {key}: {e}", key=key) from e

    # read-model cache

    def get_cached(self, key: str, default: Any = None) -> Any:
        raw = self._read(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logging.warning("offline store value %s is not valid JSON; ignoring", key)
            return default

    def set_cached(self, key: str, value: Any) -> None:
        self._write(key, json.dumps(value))

    # pending write queue

    def _decode_queue(self, raw: str | None) -> tuple[list[PendingWrite], bool]:
        """Decode the stored queue; the flag is set when it was in the legacy format."""
        if raw is None:
            return [], False
        try:
            data = json.loads(raw)
        except ValueError:
            logging.warning("pending queue is corrupt; treating as empty")
            return [], False
        # Early clients stored a bare array of quote payloads.
        if isinstance(data, list):
            return [
                PendingWrite(payload=p, id=_legacy_id(i, p))
                for i, p in enumerate(data)
                if isinstance(p, dict)
            ], True
        if not isinstance(data, dict) or data.get("version") != ENVELOPE_VERSION:
            logging.warning("pending queue has unknown format; treating as empty")
            return [], False
        entries = []
        for item in data.get("entries") or []:
            try:
                entries.append(PendingWrite.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logging.warning("skipping unreadable pending write: %r", item)
        return entries, False

    def _encode_queue(self, entries: Iterable[PendingWrite]) -> str:
        return json.dumps(
            {"version": ENVELOPE_VERSION, "entries": [e.to_dict() for e in entries]}
        )

    def drain_all(self) -> list[PendingWrite]:
        """Return every pending write in FIFO order without removing any."""
        with self.lock:
            entries, legacy = self._decode_queue(self._read(QUEUE_KEY))
            if legacy:
                self._migrate(entries)
            return entries

    def _migrate(self, entries: list[PendingWrite]) -> None:
        try:
            self._write(QUEUE_KEY, self._encode_queue(entries))
        except StorageError:
            # ids are derived from position and payload, so later reads still match
            logging.warning("could not rewrite legacy pending queue; will retry on next read")
            return
        logging.info("migrated %s legacy pending writes", len(entries))

    def count(self) -> int:
        return len(self.drain_all())

    def append(self, entry: PendingWrite) -> None:
        with self.lock:
            entries = self.drain_all()
            entries.append(entry)
            self._write(QUEUE_KEY, self._encode_queue(entries))

    def replace_all(self, entries: Iterable[PendingWrite]) -> None:
        with self.lock:
            self._write(QUEUE_KEY, self._encode_queue(list(entries)))

    def remove(self, entry_ids: Iterable[str]) -> int:
        """Drop the given entries, keeping anything appended meanwhile."""
        ids = set(entry_ids)
        if not ids:
            return 0
        with self.lock:
            entries = self.drain_all()
            kept = [e for e in entries if e.id not in ids]
            removed = len(entries) - len(kept)
            if removed:
                self._write(QUEUE_KEY, self._encode_queue(kept))
            return removed
