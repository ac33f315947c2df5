"""
Verification cache – memoizes verdicts by normalized drug name.

Records expire TTL after they were written and are evicted when a read finds
them stale. The cache is best-effort: a failing store degrades to
"always miss" and "writes do nothing", never to an exception.
"""

import json
import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Optional, Protocol

from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker

from medivision.config import Config
from medivision.models.models import Base, VerificationCacheEntry, VerificationResult

logger = logging.getLogger("medivision.cache")


class CacheStore(Protocol):
    """Raw key → (payload dict, written_at epoch seconds) storage."""

    def read(self, key: str) -> Optional[tuple[dict, float]]: ...

    def write(self, key: str, payload: dict, written_at: float) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_older_than(self, cutoff: float) -> int: ...


class InMemoryCacheStore:
    """Process-local store guarded by a lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, tuple[str, float]] = {}

    def read(self, key):
        with self._lock:
            record = self._records.get(key)
        if record is None:
            return None
        # Stored as JSON text so callers never share mutable state with the cache.
        return json.loads(record[0]), record[1]

    def write(self, key, payload, written_at):
        encoded = json.dumps(payload)
        with self._lock:
            self._records[key] = (encoded, written_at)

    def delete(self, key):
        with self._lock:
            self._records.pop(key, None)

    def delete_older_than(self, cutoff):
        with self._lock:
            stale = [k for k, (_, ts) in self._records.items() if ts < cutoff]
            for k in stale:
                del self._records[k]
        return len(stale)


class SqlAlchemyCacheStore:
    """Durable store on any SQLAlchemy database URL (SQLite file, PostgreSQL …)."""

    def __init__(self, database_url: str):
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine, tables=[VerificationCacheEntry.__table__])
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def read(self, key):
        with self._session_factory() as session:
            entry = session.get(VerificationCacheEntry, key)
            if entry is None:
                return None
            return json.loads(entry.payload), entry.written_at

    def write(self, key, payload, written_at):
        with self._session_factory() as session:
            session.merge(VerificationCacheEntry(
                normalized_name=key,
                payload=json.dumps(payload),
                written_at=written_at,
            ))
            session.commit()

    def delete(self, key):
        with self._session_factory() as session:
            session.execute(delete(VerificationCacheEntry).where(VerificationCacheEntry.normalized_name == key))
            session.commit()

    def delete_older_than(self, cutoff):
        with self._session_factory() as session:
            result = session.execute(delete(VerificationCacheEntry).where(VerificationCacheEntry.written_at < cutoff))
            session.commit()
            return result.rowcount or 0


class VerificationCache:
    """TTL-bounded verdict cache keyed by normalized name."""

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else InMemoryCacheStore()
        self.ttl = ttl or timedelta(days=Config.CACHE_TTL_DAYS)
        self._clock = clock

    def get(self, normalized_name: str) -> Optional[VerificationResult]:
        if not normalized_name:
            return None
        try:
            record = self.store.read(normalized_name)
            if record is None:
                return None
            payload, written_at = record
            if self._clock() - written_at >= self.ttl.total_seconds():
                self.store.delete(normalized_name)
                return None
            return VerificationResult.from_dict(payload)
        except Exception as exc:
            logger.warning("Cache read failed: %s", exc)
            return None

    def put(self, normalized_name: str, result: VerificationResult) -> None:
        if not normalized_name:
            return
        try:
            self.store.write(normalized_name, result.to_dict(), self._clock())
        except Exception as exc:
            logger.warning("Cache write failed: %s", exc)

    def purge_expired(self) -> int:
        """Drop every stale record; returns how many were removed."""
        try:
            removed = self.store.delete_older_than(self._clock() - self.ttl.total_seconds())
        except Exception as exc:
            logger.warning("Cache purge failed: %s", exc)
            return 0
        if removed:
            logger.info("Purged %d expired verification cache record(s).", removed)
        return removed


def build_cache_store(database_url: str = "") -> CacheStore:
    """SQLAlchemy store when a URL is configured; in-memory otherwise or on failure."""
    if not database_url:
        return InMemoryCacheStore()
    try:
        return SqlAlchemyCacheStore(database_url)
    except Exception as exc:
        logger.warning("Durable cache unavailable (%s); falling back to in-memory cache.", exc)
        return InMemoryCacheStore()
