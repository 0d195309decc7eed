import os
import sys
import threading
import time

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from throttle import ThrottleGate


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_first_call_does_not_wait():
    fake = FakeClock()
    gate = ThrottleGate(min_gap=0.4, clock=fake.clock, sleep=fake.sleep)
    with gate:
        pass
    assert fake.sleeps == []


def test_consecutive_calls_wait_for_gap():
    fake = FakeClock()
    gate = ThrottleGate(min_gap=0.4, clock=fake.clock, sleep=fake.sleep)
    for _ in range(3):
        with gate:
            fake.now += 0.1  # 呼び出し自体に0.1秒
    # 2回目以降は release から 0.4秒待つ
    assert fake.sleeps == [0.4, 0.4]


def test_gap_is_charged_when_call_fails():
    fake = FakeClock()
    gate = ThrottleGate(min_gap=0.4, clock=fake.clock, sleep=fake.sleep)
    try:
        with gate:
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    with gate:
        pass
    assert fake.sleeps == [0.4]


def test_interrupted_wait_releases_lock():
    fake = FakeClock()

    def interrupted(seconds):
        raise KeyboardInterrupt()

    gate = ThrottleGate(min_gap=0.4, clock=fake.clock, sleep=interrupted)
    with gate:
        pass
    with pytest.raises(KeyboardInterrupt):
        gate.acquire()

    # 待機が中断されてもロックは残らない
    assert gate._lock.acquire(blocking=False)
    gate._lock.release()


def test_n_calls_take_at_least_n_minus_one_gaps():
    gate = ThrottleGate(min_gap=0.05)
    n = 5
    start = time.monotonic()
    for _ in range(n):
        with gate:
            pass
    assert time.monotonic() - start >= (n - 1) * 0.05


def test_threads_are_serialized():
    gate = ThrottleGate(min_gap=0.01)
    active = []
    overlaps = []

    def call():
        with gate:
            active.append(1)
            if len(active) > 1:
                overlaps.append(True)
            time.sleep(0.005)
            active.pop()

    threads = [threading.Thread(target=call) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert overlaps == []
