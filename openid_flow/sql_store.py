"""
Database-backed store (SQLAlchemy) for deployments where several processes share pending flows.
Values are stored as JSON; expiry uses wall-clock time so all processes agree on it.
Each operation sweeps expired rows and applies its change in one transaction.
take() is decided by the row count of a conditional DELETE, so it holds across processes.
"""
import asyncio
import json
import logging
import threading
import time
import weakref
from typing import Any, Callable

from sqlalchemy import Float, String, Text, create_engine, delete, exists, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from openid_flow.store import Key, OnDelete, OnSet, Store, call_observer, encode_key

logger = logging.getLogger(__name__)

_engine_locks: "weakref.WeakKeyDictionary[Engine, threading.Lock]" = weakref.WeakKeyDictionary()
_engine_locks_guard = threading.Lock()


class Base(DeclarativeBase):
    pass


class StoreEntry(Base):
    __tablename__ = "openid_store_entries"

    # prefix + encoded key
    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)  # JSON
    # Unix timestamp; None = never expires
    expires_at: Mapped[float | None] = mapped_column(Float, nullable=True, index=True)


def create_store_engine(url: str) -> Engine:
    """
    SQLite in-memory needs StaticPool so all connections share the same DB;
    SQLite in general needs check_same_thread=False since calls run in worker threads.
    """
    if url.startswith("sqlite:///:memory:") or url == "sqlite://":
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    connect_args = {"check_same_thread": False} if "sqlite" in url else {}
    return create_engine(url, connect_args=connect_args)


def _engine_lock(engine: Engine) -> threading.Lock:
    with _engine_locks_guard:
        lock = _engine_locks.get(engine)
        if lock is None:
            lock = _engine_locks[engine] = threading.Lock()
        return lock


class SQLStore(Store):
    def __init__(
        self,
        url: str | None = None,
        *,
        engine: Engine | None = None,
        prefix: str = "kv_store",
        clock: Callable[[], float] = time.time,
        on_set: OnSet | None = None,
        on_delete: OnDelete | None = None,
    ):
        if engine is None:
            if not url:
                raise ValueError("SQLStore needs a database url or an engine")
            engine = create_store_engine(url)
        self._engine = engine
        self._sessions = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        self._prefix = prefix
        self._clock = clock
        self._on_set = on_set
        self._on_delete = on_delete
        # One in-process writer per engine; a shared in-memory SQLite connection cannot interleave sessions
        self._lock = _engine_lock(engine)
        Base.metadata.create_all(bind=engine)

    def _row_key(self, key: Key) -> str:
        return f"{self._prefix}:{encode_key(key)}"

    def _sweep(self, db: Session, now: float) -> None:
        result = db.execute(
            delete(StoreEntry).where(
                StoreEntry.key.startswith(f"{self._prefix}:", autoescape=True),
                StoreEntry.expires_at.is_not(None),
                StoreEntry.expires_at <= now,
            )
        )
        if result.rowcount:
            logger.debug("Swept %d expired rows", result.rowcount)

    def _get(self, row_key: str) -> Any | None:
        with self._lock, self._sessions() as db, db.begin():
            self._sweep(db, self._clock())
            entry = db.get(StoreEntry, row_key)
            return json.loads(entry.value) if entry is not None else None

    def _set(self, row_key: str, value: Any, ttl: float | None) -> None:
        encoded = json.dumps(value)
        with self._lock, self._sessions() as db, db.begin():
            now = self._clock()
            self._sweep(db, now)
            expires_at = now + ttl if ttl is not None and ttl > 0 else None
            db.merge(StoreEntry(key=row_key, value=encoded, expires_at=expires_at))

    def _delete(self, row_key: str) -> Any | None:
        with self._lock, self._sessions() as db, db.begin():
            self._sweep(db, self._clock())
            entry = db.get(StoreEntry, row_key)
            if entry is None:
                return None
            previous = json.loads(entry.value)
            db.delete(entry)
            return previous

    def _take(self, row_key: str) -> Any | None:
        with self._lock, self._sessions() as db, db.begin():
            now = self._clock()
            self._sweep(db, now)
            entry = db.get(StoreEntry, row_key)
            if entry is None:
                return None
            value = entry.value
            # Another process may have taken the row since it was read; only one DELETE matches
            result = db.execute(
                delete(StoreEntry)
                .where(
                    StoreEntry.key == row_key,
                    or_(StoreEntry.expires_at.is_(None), StoreEntry.expires_at > now),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            return json.loads(value)

    def _is_empty(self) -> bool:
        with self._lock, self._sessions() as db, db.begin():
            self._sweep(db, self._clock())
            stmt = select(exists().where(StoreEntry.key.startswith(f"{self._prefix}:", autoescape=True)))
            return not db.scalar(stmt)

    async def get(self, key: Key) -> Any | None:
        return await asyncio.to_thread(self._get, self._row_key(key))

    async def set(self, key: Key, value: Any, ttl: float | None = None) -> None:
        await asyncio.to_thread(self._set, self._row_key(key), value, ttl)
        await call_observer(self._on_set, key, value)

    async def delete(self, key: Key) -> None:
        previous = await asyncio.to_thread(self._delete, self._row_key(key))
        await call_observer(self._on_delete, key, previous)

    async def take(self, key: Key) -> Any | None:
        value = await asyncio.to_thread(self._take, self._row_key(key))
        if value is not None:
            await call_observer(self._on_delete, key, value)
        return value

    async def is_empty(self) -> bool:
        return await asyncio.to_thread(self._is_empty)
