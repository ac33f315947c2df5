"""
Verification cache tests – TTL expiry, best-effort degradation, and both stores.
"""

from datetime import timedelta

import pytest

from medivision.models.models import RxNormCandidate, VerificationResult, VerificationStatus
from medivision.services.verification_cache import (
    InMemoryCacheStore,
    SqlAlchemyCacheStore,
    VerificationCache,
    build_cache_store,
)

WEEK = timedelta(days=7)


def _result(name="AMOXICILLIN", score=98):
    return VerificationResult(
        normalized_name=name,
        status=VerificationStatus.DATABASE_MATCH,
        candidates=[RxNormCandidate("197361", "Amoxicillin", score), RxNormCandidate("723", "amoxicillin", 80)],
        issues=["Clinical noise filtering applied."],
        last_checked="2026-01-01T00:00:00+00:00",
    )


class BrokenStore:
    def read(self, key):
        raise OSError("disk gone")

    def write(self, key, payload, written_at):
        raise OSError("disk gone")

    def delete(self, key):
        raise OSError("disk gone")

    def delete_older_than(self, cutoff):
        raise OSError("disk gone")


# ═══════════════════════════════════════════
# TTL CACHE
# ═══════════════════════════════════════════

class TestVerificationCache:
    def test_round_trip(self, cache):
        cache.put("AMOXICILLIN", _result())
        assert cache.get("AMOXICILLIN") == _result()

    def test_miss(self, cache):
        assert cache.get("WARFARIN") is None

    def test_returned_copy_is_independent(self, cache):
        cache.put("AMOXICILLIN", _result())
        first = cache.get("AMOXICILLIN")
        first.issues.append("edited")
        assert cache.get("AMOXICILLIN").issues == ["Clinical noise filtering applied."]

    def test_fresh_just_before_ttl(self, cache, clock):
        cache.put("AMOXICILLIN", _result())
        clock.advance(WEEK.total_seconds() - 1)
        assert cache.get("AMOXICILLIN") is not None

    def test_expired_record_is_evicted(self, clock):
        store = InMemoryCacheStore()
        cache = VerificationCache(store=store, ttl=WEEK, clock=clock)
        cache.put("AMOXICILLIN", _result())
        clock.advance(WEEK.total_seconds() + 1)

        assert cache.get("AMOXICILLIN") is None
        assert store.read("AMOXICILLIN") is None

    def test_overwrite_resets_age(self, cache, clock):
        cache.put("AMOXICILLIN", _result(score=80))
        clock.advance(WEEK.total_seconds() - 10)
        cache.put("AMOXICILLIN", _result(score=99))
        clock.advance(20)

        hit = cache.get("AMOXICILLIN")
        assert hit.confidence_score == 99

    def test_empty_key_never_cached(self, cache):
        cache.put("", _result(name=""))
        assert cache.get("") is None
        assert cache.store._records == {}

    def test_failing_store_degrades(self):
        cache = VerificationCache(store=BrokenStore())
        cache.put("AMOXICILLIN", _result())
        assert cache.get("AMOXICILLIN") is None
        assert cache.purge_expired() == 0

    def test_corrupt_record_is_a_miss(self, clock):
        store = InMemoryCacheStore()
        store.write("AMOXICILLIN", {"status": "not-a-status"}, clock())
        cache = VerificationCache(store=store, clock=clock)
        assert cache.get("AMOXICILLIN") is None

    def test_purge_expired(self, clock):
        cache = VerificationCache(store=InMemoryCacheStore(), ttl=WEEK, clock=clock)
        cache.put("OLD", _result(name="OLD"))
        clock.advance(WEEK.total_seconds() + 5)
        cache.put("NEW", _result(name="NEW"))

        assert cache.purge_expired() == 1
        assert cache.get("NEW") is not None
        assert cache.get("OLD") is None


# ═══════════════════════════════════════════
# DURABLE STORE
# ═══════════════════════════════════════════

class TestSqlAlchemyCacheStore:
    @pytest.fixture
    def store(self, tmp_path):
        return SqlAlchemyCacheStore(f"sqlite:///{tmp_path / 'cache.db'}")

    def test_round_trip_through_database(self, store, clock):
        cache = VerificationCache(store=store, ttl=WEEK, clock=clock)
        cache.put("AMOXICILLIN", _result())
        assert cache.get("AMOXICILLIN") == _result()

    def test_merge_overwrites(self, store):
        store.write("K", {"a": 1}, 10.0)
        store.write("K", {"a": 2}, 20.0)
        assert store.read("K") == ({"a": 2}, 20.0)

    def test_delete_and_purge(self, store):
        store.write("A", {}, 10.0)
        store.write("B", {}, 30.0)
        store.delete("A")
        assert store.read("A") is None
        assert store.delete_older_than(40.0) == 1
        assert store.read("B") is None

    def test_survives_reopen(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cache.db'}"
        SqlAlchemyCacheStore(url).write("K", {"a": 1}, 5.0)
        assert SqlAlchemyCacheStore(url).read("K") == ({"a": 1}, 5.0)


class TestBuildCacheStore:
    def test_defaults_to_memory(self):
        assert isinstance(build_cache_store(""), InMemoryCacheStore)

    def test_sqlite_url(self, tmp_path):
        assert isinstance(build_cache_store(f"sqlite:///{tmp_path / 'c.db'}"), SqlAlchemyCacheStore)

    def test_bad_url_falls_back(self):
        assert isinstance(build_cache_store("nosuchdialect://x"), InMemoryCacheStore)
