"""
session/store.py -- Storage backends for server-side session records.

Two interchangeable backends keyed by the opaque session ID:

  MemorySessionStore -- process-local dict guarded by a lock. Default; right
      for a single-worker deployment and for tests.

  SQLSessionStore -- SQLAlchemy Core table. Same pattern as
      inventory/store.py (Repository + Data Mapper): the store owns SQL, the
      _encode/_decode mappers translate between SessionData and JSON text.
      Any SQLAlchemy URL works; SQLite gets WAL mode.

Both expire records after `ttl` seconds of inactivity (every save() refreshes
the timestamp). An expired or undecodable record loads as None -- callers
treat it exactly like an unknown ID and mint a fresh session.

Concurrency: there is no per-session locking. Two requests carrying the same
session ID race and the last save() wins. The memory backend's lock only
protects the dict itself from concurrent mutation.

Usage:
    store = create_session_store(settings)
    data = store.load(session_id)        # SessionData or None
    store.save(session_id, data)
    store.delete(session_id)
    store.purge_expired()                # call periodically to trim old rows
    store.close()
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from dataclasses import asdict
from typing import Protocol

from sqlalchemy import Column, Float, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from core.config import Settings
from session.models import SessionData

logger = logging.getLogger("rackguard.session.store")


class SessionStore(Protocol):
    """Interface shared by every session backend."""

    ttl: int

    def load(self, session_id: str) -> SessionData | None: ...

    def save(self, session_id: str, data: SessionData) -> None: ...

    def delete(self, session_id: str) -> None: ...

    def purge_expired(self) -> int: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class MemorySessionStore:
    """Dict-backed session store.

    load() hands out a deep copy so a request mutating its SessionData does
    not leak into the shared map until it calls save().
    """

    def __init__(self, ttl: int = 7200) -> None:
        self.ttl = ttl
        self._records: dict[str, tuple[SessionData, float]] = {}
        self._lock = threading.Lock()

    def load(self, session_id: str) -> SessionData | None:
        with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return None
            data, saved_at = record
            if time.time() - saved_at > self.ttl:
                del self._records[session_id]
                return None
            return copy.deepcopy(data)

    def save(self, session_id: str, data: SessionData) -> None:
        with self._lock:
            self._records[session_id] = (copy.deepcopy(data), time.time())

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._records.pop(session_id, None)

    def purge_expired(self) -> int:
        cutoff = time.time() - self.ttl
        with self._lock:
            stale = [sid for sid, (_, saved_at) in self._records.items() if saved_at < cutoff]
            for sid in stale:
                del self._records[sid]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def close(self) -> None:
        with self._lock:
            self._records.clear()


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("data", Text, nullable=False),  # JSON-encoded SessionData
    Column("updated_at", Float, nullable=False),  # epoch seconds
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so session reads do not block on writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class SQLSessionStore:
    """SQLAlchemy-backed session store.

    Usage:
        store = SQLSessionStore("sqlite:///sessions.db", ttl=7200)
        store = SQLSessionStore("postgresql://user:pw@host/db")
    """

    def __init__(self, db_url: str, ttl: int = 7200) -> None:
        self.ttl = ttl
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def load(self, session_id: str) -> SessionData | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        if row is None:
            return None
        if time.time() - row.updated_at > self.ttl:
            self.delete(session_id)
            return None
        return _decode(row.data)

    def save(self, session_id: str, data: SessionData) -> None:
        """Upsert the record. UPDATE first; INSERT when no row matched."""
        payload = _encode(data)
        now = time.time()
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.id == session_id).values(data=payload, updated_at=now)
            )
            if result.rowcount == 0:
                conn.execute(_sessions.insert().values(id=session_id, data=payload, updated_at=now))
            conn.commit()

    def delete(self, session_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()

    def purge_expired(self) -> int:
        """Delete all records idle longer than ttl. Returns number of rows removed."""
        cutoff = time.time() - self.ttl
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.updated_at < cutoff))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Mappers
# ---------------------------------------------------------------------------


def _encode(data: SessionData) -> str:
    return json.dumps(asdict(data))


def _decode(raw: str) -> SessionData | None:
    # A record written by an older schema or corrupted on disk is discarded
    # rather than raised -- the caller simply starts a fresh session.
    try:
        return SessionData(**json.loads(raw))
    except (TypeError, ValueError):
        logger.warning("Discarding undecodable session record")
        return None


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_session_store(settings: Settings) -> SessionStore:
    """Build the backend named by SESSION_BACKEND. Record TTL = session lifetime."""
    ttl = settings.session_lifetime * 60
    if settings.session_backend == "sql":
        logger.info("Using SQL session store")
        return SQLSessionStore(settings.session_db_url, ttl=ttl)
    return MemorySessionStore(ttl=ttl)
