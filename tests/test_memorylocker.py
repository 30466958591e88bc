import threading

import pytest

from tusstore.errors import FileLockedError
from tusstore.memorylocker import MemoryLocker


def test_memory_locker():
    locker = MemoryLocker()

    lock1 = locker.new_lock("one")
    lock1.lock()
    with pytest.raises(FileLockedError):
        lock1.lock()

    lock2 = locker.new_lock("one")
    with pytest.raises(FileLockedError):
        lock2.lock()

    lock1.unlock()
    lock1.unlock()

    lock2.lock()
    with pytest.raises(FileLockedError):
        lock1.lock()


def test_different_ids_do_not_conflict():
    locker = MemoryLocker()
    a = locker.new_lock("a")
    b = locker.new_lock("b")
    a.lock()
    b.lock()
    with pytest.raises(FileLockedError):
        locker.new_lock("b").lock()


def test_separate_lockers_are_independent():
    first = MemoryLocker().new_lock("x")
    second = MemoryLocker().new_lock("x")
    first.lock()
    second.lock()
    with pytest.raises(FileLockedError):
        first.lock()


def test_context_manager_releases_lock():
    locker = MemoryLocker()
    with locker.new_lock("one") as held:
        assert held.id == "one"
        with pytest.raises(FileLockedError):
            locker.new_lock("one").lock()
    again = locker.new_lock("one")
    again.lock()
    with pytest.raises(FileLockedError):
        again.lock()


def test_concurrent_locking_grants_exactly_one():
    locker = MemoryLocker()
    outcomes = []
    outcomes_guard = threading.Lock()
    barrier = threading.Barrier(8)

    def attempt():
        barrier.wait()
        try:
            locker.new_lock("shared").lock()
            result = "acquired"
        except FileLockedError:
            result = "locked"
        with outcomes_guard:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["acquired"] + ["locked"] * 7
    with pytest.raises(FileLockedError):
        locker.new_lock("shared").lock()