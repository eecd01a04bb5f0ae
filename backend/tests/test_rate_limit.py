from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
import threading

import pytest

from pollbox.rate_limit import RateLimiter, RateLimitPolicy, SlidingWindowLimiter

EMAIL = "user@example.com"


class FakeClock:
    def __init__(self) -> None:
        self.current = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(clock=clock, name="test")


def test_fresh_identifier_is_allowed_with_full_budget(limiter):
    assert limiter.is_blocked("never-seen") is False

    result = limiter.record_attempt("never-seen")

    assert result.allowed is True
    assert result.remaining_attempts == 4
    assert result.blocked_until is None


def test_budget_boundary_blocks_on_sixth_attempt(limiter, clock):
    remaining = [limiter.record_attempt(EMAIL).remaining_attempts for _ in range(5)]
    assert remaining == [4, 3, 2, 1, 0]

    sixth = limiter.record_attempt(EMAIL)
    assert sixth.allowed is False
    assert sixth.remaining_attempts == 0
    assert sixth.blocked_until == clock() + timedelta(minutes=15)
    assert limiter.is_blocked(EMAIL) is True


def test_block_holds_until_blocked_until(limiter, clock):
    for _ in range(6):
        limiter.record_attempt(EMAIL)
    blocked_until = limiter.snapshot(EMAIL).blocked_until

    clock.advance(minutes=14, seconds=59)
    assert clock() < blocked_until
    assert limiter.is_blocked(EMAIL) is True

    clock.current = blocked_until
    assert limiter.is_blocked(EMAIL) is False
    assert limiter.snapshot(EMAIL) is None


def test_attempt_after_block_expiry_starts_fresh(limiter, clock):
    for _ in range(6):
        limiter.record_attempt(EMAIL)

    clock.advance(minutes=16)
    result = limiter.record_attempt(EMAIL)

    assert result.allowed is True
    assert result.remaining_attempts == 4
    assert limiter.snapshot(EMAIL).count == 1


def test_attempts_during_block_do_not_extend_it(limiter, clock):
    for _ in range(6):
        limiter.record_attempt(EMAIL)
    original = limiter.snapshot(EMAIL)

    for _ in range(3):
        clock.advance(minutes=2)
        denied = limiter.record_attempt(EMAIL)
        assert denied.allowed is False
        assert denied.remaining_attempts == 0
        assert denied.blocked_until == original.blocked_until

    assert limiter.snapshot(EMAIL) == original


def test_window_expiry_resets_count(limiter, clock):
    for _ in range(3):
        limiter.record_attempt(EMAIL)
    assert limiter.snapshot(EMAIL).count == 3

    clock.advance(minutes=15, seconds=1)
    result = limiter.record_attempt(EMAIL)

    assert result.remaining_attempts == 4
    assert limiter.snapshot(EMAIL).count == 1


def test_window_is_measured_from_last_attempt(limiter, clock):
    limiter.record_attempt(EMAIL)
    clock.advance(minutes=10)
    limiter.record_attempt(EMAIL)
    clock.advance(minutes=10)

    result = limiter.record_attempt(EMAIL)

    assert result.remaining_attempts == 2


def test_identifiers_are_independent(limiter):
    for _ in range(6):
        limiter.record_attempt("a@example.com")

    assert limiter.is_blocked("a@example.com") is True
    assert limiter.is_blocked("b@example.com") is False
    assert limiter.record_attempt("b@example.com").remaining_attempts == 4
    assert limiter.snapshot("a@example.com").count == 6


def test_identifiers_are_opaque(limiter):
    for _ in range(6):
        limiter.record_attempt("User@Example.com")

    assert limiter.is_blocked("user@example.com") is False


def test_documented_scenario(limiter, clock):
    start = clock()
    results = [limiter.record_attempt(EMAIL) for _ in range(5)]
    assert all(result.allowed for result in results)
    assert results[-1].remaining_attempts == 0

    clock.current = start + timedelta(seconds=1)
    sixth = limiter.record_attempt(EMAIL)
    assert sixth.allowed is False
    assert sixth.blocked_until == start + timedelta(minutes=15, seconds=1)

    clock.current = start + timedelta(seconds=2)
    assert limiter.is_blocked(EMAIL) is True

    clock.current = start + timedelta(minutes=16)
    assert limiter.is_blocked(EMAIL) is False
    result = limiter.record_attempt(EMAIL)
    assert result.allowed is True
    assert result.remaining_attempts == 4


def test_custom_policy(clock):
    policy = RateLimitPolicy(max_attempts=2, window=timedelta(seconds=30), block_duration=timedelta(minutes=1))
    limiter = RateLimiter(policy=policy, clock=clock)

    assert limiter.record_attempt("ip:1").remaining_attempts == 1
    assert limiter.record_attempt("ip:1").remaining_attempts == 0
    denied = limiter.record_attempt("ip:1")

    assert denied.allowed is False
    assert denied.blocked_until == clock() + timedelta(minutes=1)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_attempts": 0},
        {"window": timedelta(0)},
        {"block_duration": timedelta(seconds=-1)},
    ],
)
def test_policy_rejects_nonsense(kwargs):
    with pytest.raises(ValueError):
        RateLimitPolicy(**kwargs)


def test_policy_from_seconds():
    policy = RateLimitPolicy.from_seconds(3, 60, 120)
    assert policy == RateLimitPolicy(3, timedelta(minutes=1), timedelta(minutes=2))


def test_concurrent_attempts_allow_exactly_the_budget(limiter):
    workers = 24
    barrier = threading.Barrier(workers)

    def attempt(_):
        barrier.wait()
        return limiter.record_attempt(EMAIL)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(attempt, range(workers)))

    allowed = [result for result in results if result.allowed]
    assert len(allowed) == 5
    assert sorted(result.remaining_attempts for result in allowed) == [0, 1, 2, 3, 4]
    assert limiter.is_blocked(EMAIL) is True


def test_concurrent_identifiers_each_get_their_own_budget(limiter):
    identifiers = [f"user{idx}@example.com" for idx in range(8)]

    def hammer(identifier):
        return [limiter.record_attempt(identifier).allowed for _ in range(7)]

    with ThreadPoolExecutor(max_workers=len(identifiers)) as pool:
        outcomes = list(pool.map(hammer, identifiers))

    for outcome in outcomes:
        assert outcome == [True] * 5 + [False] * 2


def test_sweep_evicts_only_expired_records(limiter, clock):
    for _ in range(6):
        limiter.record_attempt("blocked@example.com")
    limiter.record_attempt("quiet@example.com")
    clock.advance(minutes=10)
    limiter.record_attempt("recent@example.com")
    assert len(limiter) == 3

    clock.advance(minutes=5, seconds=30)
    evicted = limiter.sweep()

    assert evicted == 2
    assert len(limiter) == 1
    assert limiter.snapshot("recent@example.com").count == 1
    assert limiter.snapshot("blocked@example.com") is None


def test_sweep_keeps_active_blocks(limiter, clock):
    for _ in range(6):
        limiter.record_attempt(EMAIL)
    clock.advance(minutes=5)

    assert limiter.sweep() == 0
    assert limiter.is_blocked(EMAIL) is True


def test_snapshot_is_a_copy(limiter):
    limiter.record_attempt(EMAIL)
    record = limiter.snapshot(EMAIL)
    record.count = 99

    assert limiter.snapshot(EMAIL).count == 1


def test_sliding_window_limiter(clock):
    limiter = SlidingWindowLimiter(clock=clock)

    assert all(limiter.allow("http:1.2.3.4", 3, 60) for _ in range(3))
    assert limiter.allow("http:1.2.3.4", 3, 60) is False
    assert limiter.allow("http:5.6.7.8", 3, 60) is True

    clock.advance(seconds=61)
    assert limiter.allow("http:1.2.3.4", 3, 60) is True


def test_sliding_window_sweep_drops_idle_keys(clock):
    limiter = SlidingWindowLimiter(clock=clock)
    limiter.allow("http:old", 5, 60)
    clock.advance(seconds=90)
    limiter.allow("http:new", 5, 60)

    assert limiter.sweep(60) == 1
    assert limiter.allow("http:new", 1, 60) is False
