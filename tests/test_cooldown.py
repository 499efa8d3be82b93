"""Tests for the per-device upload cooldown cache."""

from scoreboard_ingest.ratelimit.cooldown import Admitted, CooldownCache, RateLimited, Rejected


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_first_upload_admitted_then_limited():
    clock = FakeClock()
    cache = CooldownCache(10, clock=clock)

    assert cache.check(1) == Admitted()
    clock.now += 2.5
    decision = cache.check(1)
    assert isinstance(decision, RateLimited)
    assert decision.retry_after_ms == 7500


def test_keys_are_independent():
    cache = CooldownCache(10, clock=FakeClock())
    assert cache.check(1) == Admitted()
    assert cache.check(2) == Admitted()
    assert len(cache) == 2


def test_expired_entry_is_admitted_again():
    clock = FakeClock()
    cache = CooldownCache(10, clock=clock)
    cache.check(1)
    clock.now += 10
    assert cache.check(1) == Admitted()


def test_retry_after_is_at_least_one_millisecond():
    clock = FakeClock()
    cache = CooldownCache(1, clock=clock)
    cache.check(1)
    clock.now += 0.9999999
    assert cache.check(1) == RateLimited(retry_after_ms=1)


def test_zero_ttl_disables_cooldown():
    cache = CooldownCache(0)
    assert all(cache.check(1) == Admitted() for _ in range(5))
    assert len(cache) == 0


def test_full_cache_rejects_new_keys():
    clock = FakeClock()
    cache = CooldownCache(10, max_keys=2, clock=clock)
    cache.check(1)
    cache.check(2)

    decision = cache.check(3)
    assert isinstance(decision, Rejected)
    assert "capacity" in decision.reason

    # Once entries expire they are purged and the slot frees up
    clock.now += 11
    assert cache.check(3) == Admitted()
    assert len(cache) == 1


def test_reset():
    cache = CooldownCache(10, clock=FakeClock())
    cache.check(1)
    cache.check(2)
    cache.reset(1)
    assert cache.check(1) == Admitted()
    cache.reset()
    assert len(cache) == 0
