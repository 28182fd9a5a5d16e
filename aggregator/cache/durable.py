"""
Durable mirrors for the cache store, so entries survive a process restart.

Two backends:
- JsonFileMirror: one JSON file per key ({key, createdAt, sourceTier, payload})
- SqlMirror: a single SQLAlchemy table, SQLite by default

Both raise CacheError on any failure; the store decides what to do with it.
"""
import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Protocol, Union

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from ..exceptions import CacheError
from .core import CacheEntry

logger = logging.getLogger("cache.durable")


class DurableLayer(Protocol):
    """Interface for durable cache backends."""

    def load(self, key: str) -> Optional[CacheEntry]:
        ...

    def save(self, entry: CacheEntry) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self) -> List[str]:
        ...


class JsonFileMirror:
    """
    Stores each entry as <sha256(key)>.json in a cache directory.

    The key is kept inside the file so listing does not depend on file names.
    """

    def __init__(self, cache_dir: Union[str, Path]):
        self._dir = Path(cache_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path_for_key(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._dir / f"{digest}.json"

    def load(self, key: str) -> Optional[CacheEntry]:
        path = self._path_for_key(key)
        if not path.exists():
            return None
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
            return CacheEntry.from_record(record, key=key)
        except (OSError, ValueError, KeyError) as e:
            raise CacheError(key, f"unreadable cache file {path.name}: {e}")

    def save(self, entry: CacheEntry) -> None:
        path = self._path_for_key(entry.key)
        tmp = path.with_suffix(".tmp")
        try:
            with self._lock:
                tmp.write_text(json.dumps(entry.to_record()), encoding="utf-8")
                tmp.replace(path)
        except (OSError, TypeError, ValueError) as e:
            raise CacheError(entry.key, f"write failed: {e}", entry=entry)

    def delete(self, key: str) -> None:
        try:
            self._path_for_key(key).unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise CacheError(key, f"delete failed: {e}")

    def keys(self) -> List[str]:
        keys = []
        for path in self._dir.glob("*.json"):
            try:
                record = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable cache file {path.name}: {e}")
                continue
            if record.get("key"):
                keys.append(record["key"])
        return keys


Base = declarative_base()


class CacheRecord(Base):
    """
    Cache entry row - one per cache key, replaced on every refresh
    """
    __tablename__ = "cache_entries"

    key = Column(String, primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    source_tier = Column(String, nullable=False)
    item_count = Column(Integer, nullable=True)
    payload = Column(Text, nullable=False)

    def __repr__(self):
        return f"<CacheRecord(key='{self.key}', source_tier='{self.source_tier}')>"


class SqlMirror:
    """Stores entries in a SQL table via SQLAlchemy."""

    def __init__(self, database_url: str = "sqlite:///./cache/aggregator.db"):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self._engine = create_engine(database_url, connect_args=connect_args, echo=False)
        self._Session = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
        Base.metadata.create_all(bind=self._engine)

    def load(self, key: str) -> Optional[CacheEntry]:
        session = self._Session()
        try:
            row = session.get(CacheRecord, key)
            if row is None:
                return None
            return CacheEntry.create(
                key=row.key,
                payload=json.loads(row.payload),
                source_tier=row.source_tier,
                created_at=_as_utc(row.created_at),
            )
        except (SQLAlchemyError, ValueError) as e:
            raise CacheError(key, f"database read failed: {e}")
        finally:
            session.close()

    def save(self, entry: CacheEntry) -> None:
        session = self._Session()
        try:
            session.merge(CacheRecord(
                key=entry.key,
                created_at=entry.created_at,
                source_tier=entry.source_tier,
                item_count=entry.item_count,
                payload=json.dumps(entry.payload),
            ))
            session.commit()
        except (SQLAlchemyError, TypeError, ValueError) as e:
            session.rollback()
            raise CacheError(entry.key, f"database write failed: {e}", entry=entry)
        finally:
            session.close()

    def delete(self, key: str) -> None:
        session = self._Session()
        try:
            session.query(CacheRecord).filter(CacheRecord.key == key).delete()
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise CacheError(key, f"database delete failed: {e}")
        finally:
            session.close()

    def keys(self) -> List[str]:
        session = self._Session()
        try:
            return [row.key for row in session.query(CacheRecord.key).all()]
        except SQLAlchemyError as e:
            raise CacheError("*", f"database listing failed: {e}")
        finally:
            session.close()


def _as_utc(ts: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts
