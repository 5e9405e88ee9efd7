from __future__ import annotations

import threading
import time

import pytest

from utils.rate_limiter import AcquireCancelled, SlidingWindowRateLimiter


class _FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _limiter(clock: _FakeClock, **kwargs) -> SlidingWindowRateLimiter:
    kwargs.setdefault("max_requests", 8)
    kwargs.setdefault("window_seconds", 1.0)
    kwargs.setdefault("cooldown_seconds", 600.0)
    return SlidingWindowRateLimiter(clock=clock, sleep=clock.sleep, **kwargs)


def test_rapid_acquires_are_spaced_by_window_over_max():
    clock = _FakeClock()
    rl = _limiter(clock)

    grants = []
    for _ in range(20):
        rl.acquire()
        grants.append(clock.now)

    gaps = [b - a for a, b in zip(grants, grants[1:])]
    assert min(gaps) >= rl.min_interval - 1e-9
    assert rl.min_interval == pytest.approx(0.125)


def test_never_more_than_max_requests_in_any_window():
    clock = _FakeClock()
    rl = _limiter(clock, max_requests=3, window_seconds=1.0)

    grants = []
    for _ in range(12):
        rl.acquire()
        grants.append(clock.now)

    for i, t in enumerate(grants):
        in_window = [g for g in grants[: i + 1] if g > t - 1.0]
        assert len(in_window) <= 3


def test_first_acquire_does_not_wait():
    clock = _FakeClock(start=100.0)
    rl = _limiter(clock)

    rl.acquire()

    assert clock.sleeps == []
    assert clock.now == 100.0


def test_cooldown_blocks_every_acquire_until_it_expires():
    clock = _FakeClock()
    rl = _limiter(clock, cooldown_seconds=600.0)
    rl.acquire()

    remaining = rl.enter_cooldown()
    assert remaining == pytest.approx(600.0)
    assert rl.in_cooldown

    rl.acquire()
    assert clock.now >= 600.0

    rl.acquire()
    assert clock.now >= 600.0 + rl.min_interval - 1e-9
    assert not rl.in_cooldown


def test_shorter_cooldown_never_shortens_active_one():
    clock = _FakeClock()
    rl = _limiter(clock, cooldown_seconds=600.0)

    rl.enter_cooldown()
    clock.now = 10.0
    rl.enter_cooldown(5.0)

    assert rl.cooldown_remaining() == pytest.approx(590.0)


def test_retry_after_can_extend_cooldown():
    clock = _FakeClock()
    rl = _limiter(clock, cooldown_seconds=60.0)

    rl.enter_cooldown()
    rl.enter_cooldown(900.0)

    assert rl.cooldown_remaining() == pytest.approx(900.0)


def test_preset_cancel_event_raises_without_granting():
    clock = _FakeClock()
    rl = _limiter(clock)
    ev = threading.Event()
    ev.set()

    with pytest.raises(AcquireCancelled):
        rl.acquire(cancel_event=ev)

    # Nothing was granted, so the next caller goes straight through.
    rl.acquire()
    assert clock.sleeps == []


def test_cancel_event_interrupts_cooldown_wait():
    rl = SlidingWindowRateLimiter(max_requests=8, window_seconds=1.0, cooldown_seconds=30.0)
    rl.enter_cooldown()
    ev = threading.Event()
    timer = threading.Timer(0.05, ev.set)
    timer.start()

    t0 = time.monotonic()
    try:
        with pytest.raises(AcquireCancelled):
            rl.acquire(cancel_event=ev)
    finally:
        timer.cancel()

    assert time.monotonic() - t0 < 5.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_requests": 0},
        {"window_seconds": 0},
        {"cooldown_seconds": -1},
    ],
)
def test_invalid_configuration_is_rejected(kwargs):
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(**kwargs)
