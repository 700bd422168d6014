import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Hashable

from .config import (
    PREFERENCE_CACHE_TTL,
    ADMIN_RECOMMENDATION_CACHE_TTL,
    PREFERENCE_SINGLE_FLIGHT,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreferenceKey:
    user_id: str


@dataclass(frozen=True)
class AdminRecommendationKey:
    target_user_id: str
    count: int


@dataclass(frozen=True)
class SurveyKey:
    digest: str


class TTLCache:
    """
    Thread-safe in-memory cache with per-entry expiry.

    Expiry is passive: stale entries are dropped when read, or in bulk via
    `purge_expired()`. `clock` is injectable for tests.
    """

    def __init__(self, default_ttl: float, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

    def delete(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """Delete every key matching `predicate`; returns how many were removed."""
        with self._lock:
            doomed = [key for key in self._entries if predicate(key)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class PreferenceCache:
    """
    Per-user preference profiles (short TTL) and admin recommendation lists
    (long TTL), with explicit per-user invalidation.

    With single-flight enabled, concurrent misses for the same user share one
    build instead of each hitting the catalog.
    """

    def __init__(
        self,
        preference_ttl: float = PREFERENCE_CACHE_TTL,
        admin_ttl: float = ADMIN_RECOMMENDATION_CACHE_TTL,
        single_flight: bool = PREFERENCE_SINGLE_FLIGHT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.preference_ttl = preference_ttl
        self.admin_ttl = admin_ttl
        self.single_flight = single_flight
        self._store = TTLCache(preference_ttl, clock=clock)
        self._inflight: dict[str, asyncio.Task] = {}
        # Bumped on invalidation so a build that started earlier is not stored
        self._generations: dict[str, int] = {}
        self._gen_lock = threading.Lock()

    def _safe_get(self, key: Hashable) -> Any:
        try:
            return self._store.get(key)
        except Exception as exc:
            logger.warning(f"Cache read failed for {key}: {type(exc).__name__}: {exc}")
            return None

    def _safe_set(self, key: Hashable, value: Any, ttl: float) -> None:
        try:
            self._store.set(key, value, ttl=ttl)
        except Exception as exc:
            logger.warning(f"Cache write failed for {key}: {type(exc).__name__}: {exc}")

    def _generation(self, user_id: str) -> int:
        with self._gen_lock:
            return self._generations.get(user_id, 0)

    def get_profile(self, user_id: str):
        return self._safe_get(PreferenceKey(user_id))

    async def get_or_build(self, user_id: str, builder: Callable[[], Awaitable[Any]]):
        """
        Return the cached profile for `user_id`, or build and cache it.

        `builder` is an argument-less coroutine function. Exceptions from it
        propagate to every caller waiting on the same build. The shared build
        runs as its own task, so cancelling one caller never cancels the
        build for the others.
        """
        cached = self.get_profile(user_id)
        if cached is not None:
            logger.debug(f"Preference cache hit for {user_id}")
            return cached

        if not self.single_flight:
            return await self._build_and_store(user_id, builder)

        task = self._inflight.get(user_id)
        if task is None:
            task = asyncio.ensure_future(self._build_and_store(user_id, builder))
            self._inflight[user_id] = task
            task.add_done_callback(lambda done: self._forget_build(user_id, done))
        else:
            logger.debug(f"Joining in-flight preference build for {user_id}")
        return await asyncio.shield(task)

    def _forget_build(self, user_id: str, task: asyncio.Future) -> None:
        if self._inflight.get(user_id) is task:
            del self._inflight[user_id]
        # Mark retrieved so asyncio does not warn when every caller was cancelled
        if not task.cancelled():
            task.exception()

    async def _build_and_store(self, user_id: str, builder: Callable[[], Awaitable[Any]]):
        generation = self._generation(user_id)
        logger.debug(f"Preference cache miss for {user_id}, building profile")
        profile = await builder()
        if self._generation(user_id) == generation:
            self._safe_set(PreferenceKey(user_id), profile, self.preference_ttl)
        else:
            logger.debug(f"Discarding profile for {user_id}: invalidated during build")
        return profile

    def get_admin_recommendations(self, target_user_id: str, count: int):
        return self._safe_get(AdminRecommendationKey(target_user_id, count))

    def set_admin_recommendations(self, target_user_id: str, count: int, recommendations) -> None:
        self._safe_set(AdminRecommendationKey(target_user_id, count), recommendations, self.admin_ttl)

    def invalidate_user(self, user_id: str) -> int:
        """
        Drop the user's profile and every admin list computed for them.

        Returns the number of entries removed.
        """
        with self._gen_lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
        self._inflight.pop(user_id, None)

        removed = self._store.delete_where(
            lambda key: (
                (isinstance(key, PreferenceKey) and key.user_id == user_id)
                or (isinstance(key, AdminRecommendationKey) and key.target_user_id == user_id)
            )
        )
        logger.info(f"Invalidated {removed} cached entries for {user_id}")
        return removed

    def purge_expired(self) -> int:
        return self._store.purge_expired()

    def clear(self) -> None:
        self._store.clear()
        self._inflight.clear()
