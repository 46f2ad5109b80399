"""Tests for the GET result cache."""

from idm_scheduler.api.cache import ResultCache, parent_path
from idm_scheduler.config import CacheConfig
from tests.fixtures.fakes import FakeClock, error_response, ok_response


def make_cache(clock: FakeClock, ttl: float = 300.0) -> ResultCache:
    return ResultCache(CacheConfig(default_ttl_seconds=ttl), clock)


class TestParentPath:
    """Tests for the invalidation scope of a mutation."""

    def test_member_endpoint(self) -> None:
        assert parent_path("/api/v1/groups/00g1/users/00u1") == "/api/v1/groups/00g1/users"

    def test_query_and_trailing_slash(self) -> None:
        assert parent_path("/api/v1/groups/00g1/?expand=stats") == "/api/v1/groups"

    def test_no_slash(self) -> None:
        assert parent_path("users") == "users"


class TestResultCache:
    """Tests for ResultCache."""

    def test_set_and_get(self, clock: FakeClock) -> None:
        cache = make_cache(clock)
        response = ok_response({"id": "00g1"})

        cache.set("/api/v1/groups/00g1", response)

        assert cache.get("/api/v1/groups/00g1") == response
        assert "/api/v1/groups/00g1" in cache
        assert len(cache) == 1

    def test_default_and_explicit_ttl(self, clock: FakeClock) -> None:
        cache = make_cache(clock, ttl=300)
        cache.set("/a", ok_response())
        cache.set("/b", ok_response(), ttl=10)

        assert cache.time_remaining("/a") == 300.0
        assert cache.time_remaining("/b") == 10.0
        assert cache.time_remaining("/c") is None

    def test_expiry(self, clock: FakeClock) -> None:
        cache = make_cache(clock)
        cache.set("/a", ok_response(), ttl=10)

        clock.advance(10)

        assert cache.get("/a") is None
        assert len(cache) == 0

    def test_failures_not_cached(self, clock: FakeClock) -> None:
        cache = make_cache(clock)

        cache.set("/a", error_response(500))

        assert cache.get("/a") is None

    def test_invalidate_related(self, clock: FakeClock) -> None:
        cache = make_cache(clock)
        cache.set("/api/v1/groups/00g1/users?limit=200", ok_response())
        cache.set("/api/v1/groups/00g1/users?after=x", ok_response())
        cache.set("/api/v1/groups/00g1", ok_response())

        removed = cache.invalidate_related("/api/v1/groups/00g1/users/00u1")

        assert removed == 2
        assert "/api/v1/groups/00g1" in cache

    def test_remove_and_clear(self, clock: FakeClock) -> None:
        cache = make_cache(clock)
        cache.set("/a", ok_response())
        cache.set("/b", ok_response())

        assert cache.remove("/a") is True
        assert cache.remove("/a") is False
        cache.clear()
        assert len(cache) == 0
