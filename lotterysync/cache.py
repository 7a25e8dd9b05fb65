"""Two-tier TTL cache for resolved lottery entities.

The memory tier is a plain dict that is swapped wholesale on every write, so a
reader never observes a half-applied update. An optional SQLAlchemy-backed tier
persists JSON-encoded entries across process restarts.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from .config import CacheSettings
from .db import build_engine, build_session_factory, session_scope
from .models import CacheRecord
from .types import CacheEntry, LotteryDraw, LotteryTicket, SeriesInfo

KEY_PREFIX = "lottery_cache_"
ALL_SERIES_KEY = "all_series"


class TTLPolicy(enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


def ttl_for(is_completed: bool) -> TTLPolicy:
    return TTLPolicy.COMPLETED if is_completed else TTLPolicy.ACTIVE


def draw_ttl(draw: LotteryDraw) -> TTLPolicy:
    """Completed draws whose outcome could not be read stay on the short TTL."""
    return ttl_for(draw.is_completed and bool(draw.winning_numbers))


def series_key(index: int) -> str:
    return f"series_{index}"


def draw_key(series_index: int, draw_id: int) -> str:
    return f"draw_{series_index}_{draw_id}"


def participants_key(series_index: int, draw_id: int) -> str:
    return f"participants_{series_index}_{draw_id}"


def user_tickets_key(wallet: str, series_index: int, draw_id: int) -> str:
    return f"user_tickets_{wallet.lower()}_{series_index}_{draw_id}"


_ENTITY_TYPES = {
    "SeriesInfo": SeriesInfo,
    "LotteryDraw": LotteryDraw,
    "LotteryTicket": LotteryTicket,
}


def encode_value(value: Any) -> Any:
    if isinstance(value, (SeriesInfo, LotteryDraw, LotteryTicket)):
        return {"__entity__": type(value).__name__, "data": value.to_dict()}
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    return value


def decode_value(raw: Any) -> Any:
    if isinstance(raw, list):
        return [decode_value(item) for item in raw]
    if isinstance(raw, dict):
        entity = raw.get("__entity__")
        if entity is not None:
            return _ENTITY_TYPES[entity].from_dict(raw["data"])
        return {k: decode_value(v) for k, v in raw.items()}
    return raw


class SqlCacheBackend:
    """Persisted cache tier stored in a single ``cache_entries`` table."""

    def __init__(self, database_url: str) -> None:
        self._engine = build_engine(database_url)
        self._sessions = build_session_factory(self._engine)

    def load(self, key: str) -> Optional[CacheEntry]:
        with session_scope(self._sessions) as session:
            record = session.get(CacheRecord, KEY_PREFIX + key)
            if record is None:
                return None
            return CacheEntry(
                value=decode_value(record.get_payload()),
                expires_at=record.expires_at,
                stored_at=record.stored_at,
            )

    def store(self, key: str, entry: CacheEntry) -> None:
        with session_scope(self._sessions) as session:
            record = session.get(CacheRecord, KEY_PREFIX + key)
            if record is None:
                record = CacheRecord(key=KEY_PREFIX + key)
                session.add(record)
            record.set_payload(encode_value(entry.value))
            record.stored_at = entry.stored_at
            record.expires_at = entry.expires_at

    def keys(self) -> List[str]:
        with session_scope(self._sessions) as session:
            rows = session.execute(
                select(CacheRecord.key).where(CacheRecord.key.startswith(KEY_PREFIX, autoescape=True))
            ).scalars()
            return [row[len(KEY_PREFIX):] for row in rows]

    def delete(self, keys: Iterable[str]) -> None:
        full_keys = [KEY_PREFIX + key for key in keys]
        if not full_keys:
            return
        with session_scope(self._sessions) as session:
            session.execute(delete(CacheRecord).where(CacheRecord.key.in_(full_keys)))

    def clear(self) -> None:
        with session_scope(self._sessions) as session:
            session.execute(delete(CacheRecord).where(CacheRecord.key.startswith(KEY_PREFIX, autoescape=True)))


KeyFilter = Union[str, Callable[[str], bool]]


class CacheStore:
    def __init__(
        self,
        active_ttl: float = 300,
        completed_ttl: float = 86400,
        backend: Optional[SqlCacheBackend] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._ttls = {TTLPolicy.ACTIVE: float(active_ttl), TTLPolicy.COMPLETED: float(completed_ttl)}
        self._backend = backend
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._logger = logger or logging.getLogger("lotterysync.cache")

    @classmethod
    def from_settings(cls, settings: CacheSettings, **kwargs: Any) -> "CacheStore":
        backend = SqlCacheBackend(settings.database_url) if settings.database_url else None
        return cls(
            active_ttl=settings.active_ttl_seconds,
            completed_ttl=settings.completed_ttl_seconds,
            backend=backend,
            **kwargs,
        )

    def ttl_seconds(self, ttl: Union[TTLPolicy, float, None]) -> float:
        if ttl is None:
            return self._ttls[TTLPolicy.ACTIVE]
        if isinstance(ttl, TTLPolicy):
            return self._ttls[ttl]
        return float(ttl)

    def get(self, key: str) -> Any:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None:
            if entry.is_live(now):
                return entry.value
            self._discard([key])
            return None

        if self._backend is None:
            return None
        try:
            entry = self._backend.load(key)
        except (SQLAlchemyError, ValueError, KeyError) as exc:
            self._logger.warning("Persisted cache read failed for %s: %s", key, exc)
            return None
        if entry is None:
            return None
        if not entry.is_live(now):
            self._discard([key])
            return None
        self._entries = {**self._entries, key: entry}
        return entry.value

    def set(self, key: str, value: Any, ttl: Union[TTLPolicy, float, None] = None) -> None:
        now = self._clock()
        entry = CacheEntry(value=value, expires_at=now + self.ttl_seconds(ttl), stored_at=now)
        self._entries = {**self._entries, key: entry}
        if self._backend is not None:
            try:
                self._backend.store(key, entry)
            except (SQLAlchemyError, TypeError, ValueError) as exc:
                self._logger.warning("Persisted cache write failed for %s: %s", key, exc)

    def invalidate(self, key_filter: KeyFilter) -> int:
        """Drop every key matching a prefix string or predicate; returns the count."""
        if isinstance(key_filter, str):
            prefix = key_filter
            matches: Callable[[str], bool] = lambda key: key.startswith(prefix)
        else:
            matches = key_filter

        candidates = set(self._entries)
        if self._backend is not None:
            try:
                candidates.update(self._backend.keys())
            except SQLAlchemyError as exc:
                self._logger.warning("Persisted cache key scan failed: %s", exc)
        doomed = [key for key in candidates if matches(key)]
        self._discard(doomed)
        if doomed:
            self._logger.debug("Invalidated %d cache entries", len(doomed))
        return len(doomed)

    def invalidate_series(self, series_index: Optional[int] = None, draw_id: Optional[int] = None) -> int:
        if series_index is not None and draw_id is not None:
            keys = {draw_key(series_index, draw_id), participants_key(series_index, draw_id)}
            return self.invalidate(lambda key: key in keys)
        if series_index is not None:
            prefixes = (f"draw_{series_index}_", f"participants_{series_index}_")
            return self.invalidate(lambda key: key.startswith(prefixes))
        count = len(self._entries)
        self.clear()
        return count

    def keys(self, pattern: str = "") -> List[str]:
        found = {key for key in self._entries if pattern in key}
        if self._backend is not None:
            try:
                found.update(key for key in self._backend.keys() if pattern in key)
            except SQLAlchemyError as exc:
                self._logger.warning("Persisted cache key scan failed: %s", exc)
        return sorted(found)

    def clear(self) -> None:
        self._entries = {}
        if self._backend is not None:
            try:
                self._backend.clear()
            except SQLAlchemyError as exc:
                self._logger.warning("Persisted cache clear failed: %s", exc)

    def _discard(self, keys: List[str]) -> None:
        if not keys:
            return
        doomed = set(keys)
        self._entries = {k: v for k, v in self._entries.items() if k not in doomed}
        if self._backend is not None:
            try:
                self._backend.delete(keys)
            except SQLAlchemyError as exc:
                self._logger.warning("Persisted cache delete failed: %s", exc)
