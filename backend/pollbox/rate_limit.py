from __future__ import annotations

from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
import logging
import threading
from typing import Callable, Iterator, Optional

logger = logging.getLogger("pollbox.rate_limit")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RateLimitPolicy:
    max_attempts: int = 5
    window: timedelta = timedelta(minutes=15)
    block_duration: timedelta = timedelta(minutes=15)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.window <= timedelta(0) or self.block_duration <= timedelta(0):
            raise ValueError("window and block_duration must be positive")

    @classmethod
    def from_seconds(cls, max_attempts: int, window_seconds: int, block_seconds: int) -> "RateLimitPolicy":
        return cls(
            max_attempts=max_attempts,
            window=timedelta(seconds=window_seconds),
            block_duration=timedelta(seconds=block_seconds),
        )


@dataclass
class AttemptRecord:
    identifier: str
    count: int
    window_start: datetime
    blocked_until: Optional[datetime] = None


@dataclass(frozen=True)
class AttemptResult:
    allowed: bool
    remaining_attempts: int
    blocked_until: Optional[datetime] = None


class RateLimiter:
    """Per-identifier attempt budget with a resetting window and a timed lockout.

    Identifiers are opaque: callers normalize them (e.g. trim and lowercase an
    email) before calling. State lives in process memory only.

    Each identifier has its own lock, so concurrent attempts for one identifier
    are serialized while different identifiers never wait on each other. The
    map lock is only held to look up, register or retire a per-identifier lock.

    Once a lockout starts its ``blocked_until`` is fixed: attempts made while
    it is active are denied without touching the record.
    """

    def __init__(
        self,
        policy: Optional[RateLimitPolicy] = None,
        clock: Clock = utc_now,
        name: str = "default",
    ) -> None:
        self.policy = policy or RateLimitPolicy()
        self.name = name
        self._clock = clock
        self._records: dict[str, AttemptRecord] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._map_lock = threading.Lock()

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._records)

    def now(self) -> datetime:
        return self._clock()

    @contextmanager
    def _locked(self, identifier: str) -> Iterator[None]:
        while True:
            with self._map_lock:
                lock = self._locks.get(identifier)
                if lock is None:
                    lock = threading.Lock()
                    self._locks[identifier] = lock
            lock.acquire()
            # The lock may have been retired by an eviction while we waited.
            if self._locks.get(identifier) is lock:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def _forget(self, identifier: str) -> None:
        # Caller holds the identifier lock.
        with self._map_lock:
            self._records.pop(identifier, None)
            self._locks.pop(identifier, None)

    def _expired(self, record: AttemptRecord, now: datetime) -> bool:
        if record.blocked_until is not None:
            return now >= record.blocked_until
        return now - record.window_start > self.policy.window

    def is_blocked(self, identifier: str) -> bool:
        # A record that does not exist yet cannot be blocked.
        if identifier not in self._records:
            return False
        with self._locked(identifier):
            record = self._records.get(identifier)
            if record is None or record.blocked_until is None:
                return False
            if self._clock() < record.blocked_until:
                return True
            self._forget(identifier)
            return False

    def record_attempt(self, identifier: str) -> AttemptResult:
        policy = self.policy
        with self._locked(identifier):
            now = self._clock()
            record = self._records.get(identifier)

            if record is not None and record.blocked_until is not None and now < record.blocked_until:
                return AttemptResult(allowed=False, remaining_attempts=0, blocked_until=record.blocked_until)

            if (
                record is None
                or record.blocked_until is not None
                or now - record.window_start > policy.window
            ):
                with self._map_lock:
                    self._records[identifier] = AttemptRecord(identifier=identifier, count=1, window_start=now)
                return AttemptResult(allowed=True, remaining_attempts=policy.max_attempts - 1)

            record.count += 1
            record.window_start = now
            if record.count > policy.max_attempts:
                record.blocked_until = now + policy.block_duration
                logger.warning(
                    "Attempt budget exhausted, identifier locked out",
                    extra={
                        "event": "lockout_started",
                        "scope": self.name,
                        "identifier": identifier,
                        "blocked_until": record.blocked_until.isoformat(),
                    },
                )
                return AttemptResult(allowed=False, remaining_attempts=0, blocked_until=record.blocked_until)

            return AttemptResult(allowed=True, remaining_attempts=policy.max_attempts - record.count)

    def snapshot(self, identifier: str) -> Optional[AttemptRecord]:
        if identifier not in self._records:
            return None
        with self._locked(identifier):
            record = self._records.get(identifier)
            return replace(record) if record is not None else None

    def sweep(self) -> int:
        """Evict expired records and idle locks; meant to run off the request path."""
        with self._map_lock:
            candidates = list(self._locks)

        evicted = 0
        for identifier in candidates:
            with self._locked(identifier):
                record = self._records.get(identifier)
                if record is None:
                    self._forget(identifier)
                elif self._expired(record, self._clock()):
                    self._forget(identifier)
                    evicted += 1
        return evicted


class SlidingWindowLimiter:
    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: str, max_events: int, period_seconds: int) -> bool:
        now = self._clock().timestamp()
        window_start = now - period_seconds
        with self._lock:
            events = self._events[key]
            while events and events[0] < window_start:
                events.popleft()

            if len(events) >= max_events:
                return False

            events.append(now)
            return True

    def sweep(self, period_seconds: int) -> int:
        cutoff = self._clock().timestamp() - period_seconds
        with self._lock:
            stale = [key for key, events in self._events.items() if not events or events[-1] < cutoff]
            for key in stale:
                del self._events[key]
        return len(stale)
