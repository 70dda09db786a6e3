from __future__ import annotations

import threading
import time

import pytest

from keyed_store import FairLock, KeyedLock, LockAcquisitionError


def test_same_key_work_never_overlaps() -> None:
    locks = KeyedLock()
    inside = 0
    max_inside = 0
    counter_guard = threading.Lock()

    def work() -> None:
        nonlocal inside, max_inside
        with counter_guard:
            inside += 1
            max_inside = max(max_inside, inside)
        time.sleep(0.005)
        with counter_guard:
            inside -= 1

    threads = [
        threading.Thread(target=locks.run_exclusive, args=("k", work)) for _ in range(20)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert max_inside == 1
    assert len(locks) == 0


def test_distinct_keys_run_in_parallel() -> None:
    locks = KeyedLock()
    n = 8

    def work() -> None:
        time.sleep(0.2)

    threads = [
        threading.Thread(target=locks.run_exclusive, args=(f"key-{i}", work))
        for i in range(n)
    ]
    start = time.perf_counter()
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    elapsed = time.perf_counter() - start

    # Serialized execution would take n * 0.2s.
    assert elapsed < 0.2 * n / 2
    assert len(locks) == 0


def test_result_and_error_propagate_unchanged() -> None:
    locks = KeyedLock()
    assert locks.run_exclusive("k", lambda: 42) == 42

    class Boom(Exception):
        pass

    err = Boom("boom")

    def fail() -> None:
        raise err

    with pytest.raises(Boom) as info:
        locks.run_exclusive("k", fail)
    assert info.value is err
    assert len(locks) == 0


def test_records_are_reclaimed_when_idle() -> None:
    locks = KeyedLock()
    keys = [f"k{i % 5}" for i in range(100)]

    seen: list[bool] = []

    def work(key: str) -> None:
        seen.append(locks.refs(key) >= 1 and key in locks.active_keys())

    threads = [
        threading.Thread(target=locks.run_exclusive, args=(key, lambda key=key: work(key)))
        for key in keys
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(seen) == 100 and all(seen)
    assert len(locks) == 0
    assert locks.active_keys() == []
    assert locks.refs("k0") == 0


def test_waiters_are_admitted_in_arrival_order() -> None:
    locks = KeyedLock()
    order: list[int] = []
    release_first = threading.Event()
    first_inside = threading.Event()

    def first() -> None:
        first_inside.set()
        release_first.wait(5)

    holder = threading.Thread(target=locks.run_exclusive, args=("k", first))
    holder.start()
    assert first_inside.wait(5)

    waiters = []
    for i in range(5):
        t = threading.Thread(
            target=locks.run_exclusive, args=("k", lambda i=i: order.append(i))
        )
        t.start()
        # Wait until this thread has registered before starting the next one.
        deadline = time.monotonic() + 5
        while locks.refs("k") < i + 2 and time.monotonic() < deadline:
            time.sleep(0.001)
        waiters.append(t)

    release_first.set()
    holder.join()
    for t in waiters:
        t.join()

    assert order == [0, 1, 2, 3, 4]
    assert len(locks) == 0


def test_timeout_raises_and_gives_back_reference() -> None:
    locks = KeyedLock()
    inside = threading.Event()
    release = threading.Event()

    def hold() -> None:
        inside.set()
        release.wait(5)

    holder = threading.Thread(target=locks.run_exclusive, args=("k", hold))
    holder.start()
    assert inside.wait(5)

    with pytest.raises(LockAcquisitionError) as info:
        locks.run_exclusive("k", lambda: None, timeout=0.05)
    assert info.value.key == "k"
    assert locks.refs("k") == 1

    release.set()
    holder.join()
    assert len(locks) == 0

    # The withdrawn waiter must not block later callers.
    assert locks.run_exclusive("k", lambda: "ok", timeout=1) == "ok"


def test_locked_context_manager_holds_key() -> None:
    locks = KeyedLock()
    with locks.locked("a"):
        assert locks.active_keys() == ["a"]
        with locks.locked("b"):
            assert sorted(locks.active_keys()) == ["a", "b"]
    assert len(locks) == 0


def test_fair_lock_basics() -> None:
    lock = FairLock()
    assert lock.acquire() is True
    assert lock.locked() is True
    lock.release()
    assert lock.locked() is False

    with lock:
        assert lock.locked() is True

    with pytest.raises(RuntimeError):
        lock.release()


def test_fair_lock_times_out_for_other_threads() -> None:
    lock = FairLock()
    results: list[bool] = []

    with lock:
        t = threading.Thread(target=lambda: results.append(lock.acquire(timeout=0.02)))
        t.start()
        t.join()

    assert results == [False]
    assert lock.acquire(timeout=1) is True
    lock.release()


def test_fair_lock_is_reentrant_for_owner() -> None:
    lock = FairLock()
    with lock:
        assert lock.acquire(timeout=0.01) is True
        lock.release()
        assert lock.locked() is True
    assert lock.locked() is False

    # Another thread cannot release what it does not own.
    with lock:
        errors: list[BaseException] = []

        def release_from_elsewhere() -> None:
            try:
                lock.release()
            except RuntimeError as exc:
                errors.append(exc)

        t = threading.Thread(target=release_from_elsewhere)
        t.start()
        t.join()
        assert len(errors) == 1


def test_nested_calls_on_same_key_do_not_deadlock() -> None:
    locks = KeyedLock()

    def inner() -> tuple[int, int]:
        before = locks.refs("k")
        return before, locks.run_exclusive("k", lambda: locks.refs("k"), timeout=0.5)

    assert locks.run_exclusive("k", inner, timeout=0.5) == (1, 2)
    assert len(locks) == 0

    # The key is fully released afterwards.
    seen: list[str] = []
    t = threading.Thread(
        target=locks.run_exclusive, args=("k", lambda: seen.append("other")), kwargs={"timeout": 1}
    )
    t.start()
    t.join()
    assert seen == ["other"]


def test_interrupted_wait_withdraws_and_cleans_up(monkeypatch) -> None:
    locks = KeyedLock()

    class Interrupted(Exception):
        pass

    def interrupted_wait_for(self, predicate, timeout=None):
        raise Interrupted()

    with monkeypatch.context() as m:
        m.setattr(threading.Condition, "wait_for", interrupted_wait_for)
        with pytest.raises(Interrupted):
            locks.run_exclusive("k", lambda: "never")

    assert len(locks) == 0
    assert locks.run_exclusive("k", lambda: "ok", timeout=1) == "ok"


def test_interrupted_waiter_behind_holder_does_not_block_queue(monkeypatch) -> None:
    locks = KeyedLock()
    inside = threading.Event()
    release = threading.Event()

    def hold() -> None:
        inside.set()
        release.wait(5)

    holder = threading.Thread(target=locks.run_exclusive, args=("k", hold))
    holder.start()
    assert inside.wait(5)

    class Interrupted(Exception):
        pass

    real_wait_for = threading.Condition.wait_for
    me = threading.get_ident()

    def interrupted_wait_for(self, predicate, timeout=None):
        if threading.get_ident() == me:
            raise Interrupted()
        return real_wait_for(self, predicate, timeout)

    with monkeypatch.context() as m:
        m.setattr(threading.Condition, "wait_for", interrupted_wait_for)
        with pytest.raises(Interrupted):
            locks.run_exclusive("k", lambda: None)
    assert locks.refs("k") == 1

    release.set()
    holder.join()
    assert len(locks) == 0
    assert locks.run_exclusive("k", lambda: "ok", timeout=1) == "ok"
