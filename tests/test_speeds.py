import threading
import time

from requester.speeds import RateLimit, Speeds


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_speeds_within_interval_keeps_counting():
    clock = FakeClock()
    sps = Speeds(interval=1.0, clock=clock)
    sps.add(100)
    clock.now = 0.5
    assert sps.get_speeds() == 200
    clock.now = 1.0
    assert sps.get_speeds() == 100


def test_speeds_resets_after_interval():
    clock = FakeClock()
    sps = Speeds(clock=clock)
    sps.add(100)
    clock.now = 2.0
    assert sps.get_speeds() == 50
    clock.now = 3.0
    assert sps.get_speeds() == 0


def test_speeds_zero_elapsed():
    clock = FakeClock()
    sps = Speeds(clock=clock)
    sps.add(10)
    assert sps.get_speeds() == 0


def test_rate_limit_sequence_blocks_twice():
    r = RateLimit(100)
    r.set_interval(0.05)
    start = time.monotonic()
    for n in (101, 10, 11, 12, 13, 22, 35, 25, 11):
        r.add(n)
    elapsed = time.monotonic() - start
    count = r.count
    r.stop()
    # The last add only proceeds once the count is below the limit.
    assert 11 <= count < 111
    assert 0.09 <= elapsed < 5


def test_rate_limit_under_limit_does_not_reset():
    r = RateLimit(1000, interval=10)
    r.add(500)
    r.add(400)
    assert r.count == 900
    r.stop()


def test_rate_limit_blocks_until_reset():
    r = RateLimit(100, interval=0.2)
    r.add(150)
    start = time.monotonic()
    r.add(10)
    elapsed = time.monotonic() - start
    assert r.count == 10
    assert elapsed > 0.0
    r.stop()


def test_rate_limit_stop_releases_waiter():
    r = RateLimit(10, interval=60)
    r.add(20)
    threading.Timer(0.1, r.stop).start()
    start = time.monotonic()
    r.add(1)
    assert time.monotonic() - start >= 0.05
    assert r.count == 21


def test_rate_limit_nonpositive_interval():
    r = RateLimit(10)
    r.set_interval(0)
    assert r.interval == 1.0
    r.set_interval(0.5)
    assert r.interval == 0.5