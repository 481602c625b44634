"""Run lock: at most one convergence transaction per node.

The token is a file holding the owner's pid. It is published by writing the pid to
a private temp file and hard-linking it into place; `os.link` fails when a token
already exists, so creation is exclusive and readers never see a half-written pid.
A token left behind by a crashed run is recognised by checking whether its owner
is still alive, not by its mere existence.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class LockState(str, Enum):
    OWNED = "OWNED"
    BUSY = "BUSY"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True)
class LockAcquisition:
    state: LockState
    owner_pid: int | None = None
    waited_seconds: float = 0.0

    @property
    def owned(self) -> bool:
        return self.state == LockState.OWNED


def pid_is_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class RunLock:
    def __init__(
        self,
        path: Path,
        *,
        pid: int | None = None,
        is_alive: Callable[[int], bool] = pid_is_alive,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.path = path
        self.pid = os.getpid() if pid is None else pid
        self._is_alive = is_alive
        self._sleep = sleep
        self._clock = clock
        self._owned = False

    def owner(self) -> int | None:
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            return int(text)
        except ValueError:
            return None

    def try_lock(self) -> bool:
        for _ in range(2):
            if self._publish_token():
                self._owned = True
                return True
            owner = self.owner()
            if owner == self.pid:
                self._owned = True
                return True
            if owner is not None and self._is_alive(owner):
                return False
            if owner is None and self.path.exists() and self._recently_created():
                # token is being replaced by another acquirer; treat as held
                return False
            if not self._discard_stale(owner):
                return False
        return False

    def acquire(self, wait_seconds: float | None, max_wait_seconds: float | None) -> LockAcquisition:
        started = self._clock()
        while True:
            if self.try_lock():
                return LockAcquisition(LockState.OWNED, self.pid, self._clock() - started)
            owner = self.owner()
            if not wait_seconds:
                self.logger.info(
                    "Run of configuration client already in progress; skipping (%s exists)",
                    self.path,
                )
                return LockAcquisition(LockState.BUSY, owner, 0.0)
            waited = self._clock() - started
            if max_wait_seconds is not None and waited >= max_wait_seconds:
                self.logger.info("Exiting now because the maxwaitforlock timeout has been exceeded.")
                return LockAcquisition(LockState.TIMED_OUT, owner, waited)
            self.logger.info("Run of configuration client already in progress (%s exists)", self.path)
            self.logger.info("Will try again in %s seconds.", _format_seconds(wait_seconds))
            self._sleep(wait_seconds)

    def release(self) -> bool:
        if not self._owned:
            return False
        self._owned = False
        if self.owner() != self.pid:
            self.logger.warning("Lock: token %s no longer belongs to pid=%s; leaving it", self.path, self.pid)
            return False
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True

    @contextmanager
    def held(self, wait_seconds: float | None, max_wait_seconds: float | None) -> Iterator[LockAcquisition]:
        acquisition = self.acquire(wait_seconds, max_wait_seconds)
        try:
            yield acquisition
        finally:
            if acquisition.owned:
                self.release()

    def _publish_token(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.{self.pid}.{time.time_ns()}")
        tmp_path.write_text(f"{self.pid}\n", encoding="utf-8")
        try:
            os.link(tmp_path, self.path)
        except FileExistsError:
            return False
        finally:
            tmp_path.unlink()
        return True

    def _discard_stale(self, owner: int | None) -> bool:
        """Move the token aside and drop it only if it still names `owner`.

        Another acquirer may have replaced the stale token since it was read; in that
        case the moved file is linked back and the lock stays held.
        """
        aside = self.path.with_name(f".{self.path.name}.stale.{self.pid}.{time.time_ns()}")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return True
        try:
            text = aside.read_text(encoding="utf-8").strip()
            claimed = int(text) if text.isdigit() else None
            if claimed == owner:
                self.logger.warning("Lock: removing stale lock %s (owner pid=%s is not running)", self.path, owner)
                return True
            try:
                os.link(aside, self.path)
            except FileExistsError:
                self.logger.warning("Lock: token %s was replaced while restoring pid=%s", self.path, claimed)
            return False
        finally:
            aside.unlink()

    def _recently_created(self) -> bool:
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        return age < 1.0


def _format_seconds(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
