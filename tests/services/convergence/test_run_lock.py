from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest

from fleet_agent.convergence.lock import LockState, RunLock


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _alive(*pids: int):
    return lambda pid: pid in pids


def test_lock_is_exclusive_and_released(tmp_path: Path) -> None:
    path = tmp_path / "state" / "agent_catalog_run.lock"
    first = RunLock(path, pid=100, is_alive=_alive(100, 200))
    second = RunLock(path, pid=200, is_alive=_alive(100, 200))

    assert first.try_lock() is True
    assert first.owner() == 100
    assert second.try_lock() is False

    assert first.release() is True
    assert not path.exists()
    assert second.try_lock() is True
    assert second.owner() == 200


def test_no_wait_returns_busy_and_logs(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    path = tmp_path / "agent_catalog_run.lock"
    RunLock(path, pid=100, is_alive=_alive(100)).try_lock()
    contender = RunLock(path, pid=200, is_alive=_alive(100))

    acquisition = contender.acquire(0, 60)

    assert acquisition.state == LockState.BUSY
    assert acquisition.owner_pid == 100
    assert "Run of configuration client already in progress; skipping" in caplog.text
    assert path.read_text(encoding="utf-8").strip() == "100"


def test_waiting_contender_proceeds_after_release(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    path = tmp_path / "agent_catalog_run.lock"
    holder = RunLock(path, pid=100, is_alive=_alive(100, 200))
    holder.try_lock()
    clock = _FakeClock()

    def sleep(seconds: float) -> None:
        clock.sleep(seconds)
        holder.release()

    contender = RunLock(path, pid=200, is_alive=_alive(100, 200), sleep=sleep, clock=clock)
    with contender.held(2, 60) as acquisition:
        assert acquisition.state == LockState.OWNED
        assert contender.owner() == 200

    assert clock.sleeps == [2]
    assert "Will try again in 2 seconds." in caplog.text
    assert not path.exists()


def test_waiting_contender_gives_up_after_max_wait(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    path = tmp_path / "agent_catalog_run.lock"
    RunLock(path, pid=100, is_alive=_alive(100)).try_lock()
    clock = _FakeClock()
    contender = RunLock(path, pid=200, is_alive=_alive(100), sleep=clock.sleep, clock=clock)

    acquisition = contender.acquire(10, 30)

    assert acquisition.state == LockState.TIMED_OUT
    assert clock.sleeps == [10, 10, 10]
    assert "Exiting now because the maxwaitforlock timeout has been exceeded." in caplog.text
    assert path.read_text(encoding="utf-8").strip() == "100"


def test_stale_lock_from_dead_owner_is_recovered(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "agent_catalog_run.lock"
    path.write_text("4242\n", encoding="utf-8")
    lock = RunLock(path, pid=200, is_alive=_alive(200))

    with lock.held(0, 60) as acquisition:
        assert acquisition.owned
        assert lock.owner() == 200

    assert "removing stale lock" in caplog.text
    assert not path.exists()


def test_release_leaves_foreign_token_alone(tmp_path: Path) -> None:
    path = tmp_path / "agent_catalog_run.lock"
    lock = RunLock(path, pid=100, is_alive=_alive(100, 300))
    lock.try_lock()
    path.write_text("300\n", encoding="utf-8")

    assert lock.release() is False
    assert path.read_text(encoding="utf-8").strip() == "300"


def test_concurrent_acquirers_only_one_wins(tmp_path: Path) -> None:
    path = tmp_path / "agent_catalog_run.lock"
    pids = list(range(1000, 1008))
    barrier = threading.Barrier(len(pids))
    winners: list[int] = []
    guard = threading.Lock()

    def worker(pid: int) -> None:
        lock = RunLock(path, pid=pid, is_alive=lambda _: True)
        barrier.wait()
        if lock.try_lock():
            with guard:
                winners.append(pid)

    threads = [threading.Thread(target=worker, args=(pid,)) for pid in pids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert RunLock(path).owner() == winners[0]


def test_stale_recovery_does_not_remove_a_token_claimed_meanwhile(tmp_path: Path) -> None:
    path = tmp_path / "agent_catalog_run.lock"
    path.write_text("999\n", encoding="utf-8")
    first = RunLock(path, pid=100, is_alive=_alive(100, 200))

    def second_checks_liveness(pid: int) -> bool:
        # the first acquirer recovers the stale token while the second is still checking it
        if pid == 999:
            assert first.try_lock() is True
        return pid in (100, 200)

    second = RunLock(path, pid=200, is_alive=second_checks_liveness)

    assert second.try_lock() is False
    assert first.owner() == 100
    assert sorted(entry.name for entry in tmp_path.iterdir()) == ["agent_catalog_run.lock"]
    assert first.release() is True
