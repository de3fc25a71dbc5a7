"""
Tests for the run lock.

Two RunLock instances on the same path stand in for two concurrent runs;
flock locks belong to the open file, so they exclude each other even
inside one process. Coroutines sharing one instance are exercised too.
"""

import asyncio
import tempfile
from pathlib import Path

from clan_manager.exceptions import RunLockError
from clan_manager.run_lock import RunLock


class TestRunLockProperty:
    """
    Tests for run-level mutual exclusion.

    **Feature: clan-manager, Property 44: At most one run holds the lock**
    """

    def test_second_lock_is_refused(self) -> None:
        """
        Property 44: At most one run holds the lock.

        While one lock holds the file, neither it nor another lock on the same
        path SHALL acquire it again; after release it SHALL succeed.

        **Feature: clan-manager, Property 44: At most one run holds the lock**
        """
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "run.lock"
            first = RunLock(path)
            second = RunLock(path)

            assert first.try_acquire()
            assert first.locked
            assert not first.try_acquire()
            assert not second.try_acquire()
            assert not second.locked

            first.release()
            assert not first.locked
            assert second.try_acquire()
            second.release()

    def test_acquire_times_out(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "run.lock"
            holder = RunLock(path)
            assert holder.try_acquire()

            waiter = RunLock(path, timeout=0.0)
            try:
                asyncio.run(waiter.acquire())
                assert False, "Expected RunLockError"
            except RunLockError as e:
                assert e.code == "system_busy"
                assert e.details["lock_file"] == str(path)
            finally:
                holder.release()

    def test_context_manager_releases(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "run.lock"

            async def run() -> None:
                async with RunLock(path) as lock:
                    assert lock.locked
                    assert not RunLock(path).try_acquire()

                other = RunLock(path)
                assert other.try_acquire()
                other.release()

            asyncio.run(run())

    def test_release_without_acquire_is_noop(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            lock = RunLock(Path(tmpdir) / "run.lock")
            lock.release()
            assert not lock.locked

    def test_shared_instance_serializes_holders(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "run.lock"
            lock = RunLock(path, timeout=5.0)
            lock.POLL_INTERVAL = 0.01
            events: list[str] = []

            async def body(name: str) -> None:
                async with lock:
                    events.append(f"{name} in")
                    assert not RunLock(path).try_acquire()
                    await asyncio.sleep(0.05)
                    assert not RunLock(path).try_acquire()
                    events.append(f"{name} out")

            async def run() -> None:
                await asyncio.gather(body("a"), body("b"))

            asyncio.run(run())

            assert events == ["a in", "a out", "b in", "b out"]
            assert not lock.locked
            other = RunLock(path)
            assert other.try_acquire()
            other.release()

    def test_shared_instance_times_out(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            lock = RunLock(Path(tmpdir) / "run.lock", timeout=0.0)

            async def run() -> None:
                async with lock:
                    try:
                        await lock.acquire()
                        assert False, "Expected RunLockError"
                    except RunLockError as e:
                        assert e.code == "system_busy"
                    assert lock.locked

            asyncio.run(run())
            assert not lock.locked
