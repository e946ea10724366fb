"""Lock-file guard for read-modify-write cycles on shared local files."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from pathlib import Path


class FileLockTimeout(TimeoutError):
    """Raised when the lock file stays held past the timeout."""


@dataclass
class FileLock:
    """Exclusive lock file next to ``target``.

    The lock file records the holder so a stuck lock can be traced to a
    process. Locks older than ``stale_seconds`` are broken.
    """

    target: str | Path
    owner: str = ""
    timeout: float = 10.0
    poll_interval: float = 0.05
    stale_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.stale_seconds <= 0:
            raise ValueError("stale_seconds must be positive")
        target = Path(self.target)
        self.path = target.with_name(target.name + ".lock")
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    # ------------------------------------------------------------------
    def acquire(self) -> None:
        if self.held:
            raise RuntimeError(f"{self.path} is already held by this process")
        deadline = time.monotonic() + self.timeout
        label = f"{self.owner or 'pid'}:{os.getpid()}".encode("utf-8")
        while True:
            try:
                self._fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if self._is_stale():
                    self._break_lock()
                    continue
                if time.monotonic() >= deadline:
                    raise FileLockTimeout(f"{self.path} held by {self.holder() or 'unknown'}")
                time.sleep(self.poll_interval)
                continue
            os.write(self._fd, label)
            return

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            os.close(self._fd)
        finally:
            self._fd = None
            try:
                os.unlink(self.path)
            except FileNotFoundError:
                pass

    def holder(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8").strip()
        except OSError:
            return ""

    # ------------------------------------------------------------------
    def _is_stale(self) -> bool:
        try:
            modified = self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        return time.time() - modified >= self.stale_seconds

    def _break_lock(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False


__all__ = ["FileLock", "FileLockTimeout"]
