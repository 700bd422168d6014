import asyncio

import pytest

from movie_rec.cache import (
    AdminRecommendationKey,
    PreferenceCache,
    PreferenceKey,
    SurveyKey,
    TTLCache,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_ttl_cache_expires_passively():
    clock = FakeClock()
    cache = TTLCache(default_ttl=30, clock=clock)
    cache.set(SurveyKey("abc"), "value")

    clock.now += 29
    assert cache.get(SurveyKey("abc")) == "value"

    clock.now += 1
    assert cache.get(SurveyKey("abc")) is None
    assert len(cache) == 0


def test_purge_expired_removes_only_stale_entries():
    clock = FakeClock()
    cache = TTLCache(default_ttl=10, clock=clock)
    cache.set("short", 1)
    cache.set("long", 2, ttl=100)

    clock.now += 50

    assert cache.purge_expired() == 1
    assert cache.get("long") == 2


def test_typed_keys_do_not_collide():
    cache = TTLCache(default_ttl=60)
    cache.set(PreferenceKey("alice"), "profile")
    cache.set(AdminRecommendationKey("alice", 10), "recs")

    assert cache.get(PreferenceKey("alice")) == "profile"
    assert cache.get(AdminRecommendationKey("alice", 10)) == "recs"
    assert cache.get(AdminRecommendationKey("alice", 5)) is None


@pytest.mark.asyncio
async def test_get_or_build_caches_until_ttl():
    clock = FakeClock()
    cache = PreferenceCache(preference_ttl=30, clock=clock)
    builds = []

    async def builder():
        builds.append(1)
        return f"profile-{len(builds)}"

    assert await cache.get_or_build("alice", builder) == "profile-1"
    assert await cache.get_or_build("alice", builder) == "profile-1"

    clock.now += 31
    assert await cache.get_or_build("alice", builder) == "profile-2"


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_build():
    cache = PreferenceCache(single_flight=True)
    started = asyncio.Event()
    release = asyncio.Event()
    builds = []

    async def builder():
        builds.append(1)
        started.set()
        await release.wait()
        return "profile"

    first = asyncio.create_task(cache.get_or_build("alice", builder))
    await started.wait()
    second = asyncio.create_task(cache.get_or_build("alice", builder))
    await asyncio.sleep(0)
    release.set()

    assert await asyncio.gather(first, second) == ["profile", "profile"]
    assert len(builds) == 1


@pytest.mark.asyncio
async def test_cancelling_first_caller_does_not_fail_joined_caller():
    cache = PreferenceCache(single_flight=True)
    started = asyncio.Event()
    release = asyncio.Event()
    builds = []

    async def builder():
        builds.append(1)
        started.set()
        await release.wait()
        return "profile"

    first = asyncio.create_task(cache.get_or_build("alice", builder))
    await started.wait()
    second = asyncio.create_task(cache.get_or_build("alice", builder))
    await asyncio.sleep(0)

    first.cancel()
    await asyncio.sleep(0)
    release.set()

    assert await second == "profile"
    assert first.cancelled()
    assert len(builds) == 1
    assert cache.get_profile("alice") == "profile"


@pytest.mark.asyncio
async def test_without_single_flight_each_miss_builds():
    cache = PreferenceCache(single_flight=False)
    builds = []

    async def builder():
        builds.append(1)
        await asyncio.sleep(0)
        return "profile"

    await asyncio.gather(cache.get_or_build("alice", builder), cache.get_or_build("alice", builder))

    assert len(builds) == 2


@pytest.mark.asyncio
async def test_build_failure_propagates_and_is_not_cached():
    cache = PreferenceCache()

    async def failing():
        raise RuntimeError("catalog down")

    async def working():
        return "profile"

    with pytest.raises(RuntimeError):
        await cache.get_or_build("alice", failing)
    assert await cache.get_or_build("alice", working) == "profile"


def test_invalidate_user_drops_profile_and_all_admin_counts():
    cache = PreferenceCache()
    cache._store.set(PreferenceKey("alice"), "profile")
    cache.set_admin_recommendations("alice", 10, ["a"])
    cache.set_admin_recommendations("alice", 25, ["b"])
    cache.set_admin_recommendations("bob", 10, ["c"])

    assert cache.invalidate_user("alice") == 3

    assert cache.get_profile("alice") is None
    assert cache.get_admin_recommendations("alice", 10) is None
    assert cache.get_admin_recommendations("alice", 25) is None
    assert cache.get_admin_recommendations("bob", 10) == ["c"]


@pytest.mark.asyncio
async def test_invalidation_during_build_discards_stale_profile():
    cache = PreferenceCache()

    async def builder():
        cache.invalidate_user("alice")
        return "stale"

    assert await cache.get_or_build("alice", builder) == "stale"
    assert cache.get_profile("alice") is None


def test_cache_read_failure_is_treated_as_miss(monkeypatch):
    cache = PreferenceCache()

    def broken_get(key, default=None):
        raise RuntimeError("corrupt")

    monkeypatch.setattr(cache._store, "get", broken_get)

    assert cache.get_profile("alice") is None
    assert cache.get_admin_recommendations("alice", 10) is None
