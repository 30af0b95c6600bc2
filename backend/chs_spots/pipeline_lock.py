"""
Advisory lock shared by pipeline scripts.

The lock file holds ``{"pid", "script", "timestamp"}``. A lock older than
``stale_after`` seconds is assumed to belong to a crashed run and is taken
over, as is a lock file that cannot be decoded. The read-check-write happens
under an exclusive ``flock`` on a sibling guard file so two processes starting
at the same moment cannot both win.

Usage:
    with PipelineLock(settings.pipeline_lock_path, "create-spots"):
        ...
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:
    import fcntl

    HAS_FCNTL = True
except ImportError:
    HAS_FCNTL = False

from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_STALE_SECONDS = 30 * 60


class PipelineLockHeld(RuntimeError):
    """Another run holds a fresh pipeline lock."""

    def __init__(self, status: LockStatus):
        self.status = status
        super().__init__(
            f"pipeline lock held by {status.holder!r} (pid {status.pid}, "
            f"{status.age_seconds:.0f}s old)"
        )


@dataclass(frozen=True, slots=True)
class LockStatus:
    acquired: bool
    holder: str | None = None
    pid: int | None = None
    age_seconds: float | None = None


class FileLock:
    """Exclusive flock on ``<dir>/.<name>.guard`` with timeout and polling."""

    def __init__(self, path: Path | str, *, timeout: float = 10.0, poll_interval: float = 0.01):
        self.path = Path(path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._handle: Any = None
        self._guard_path = self.path.parent / f".{self.path.name}.guard"

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def acquire(self) -> None:
        if not HAS_FCNTL:
            raise RuntimeError("File locking requires fcntl (Unix/Linux/macOS)")

        self._guard_path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout
        handle = open(self._guard_path, "a+")
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                if time.monotonic() >= deadline:
                    handle.close()
                    raise TimeoutError(
                        f"Could not acquire lock on {self.path} within {self.timeout}s"
                    ) from None
                time.sleep(self.poll_interval)
            else:
                self._handle = handle
                return

    def release(self) -> None:
        if not self._handle:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None


class PipelineLock:
    def __init__(
        self,
        path: Path | str,
        script: str,
        *,
        stale_after: float = DEFAULT_STALE_SECONDS,
    ):
        if not script or not script.strip():
            raise ValueError("script name is required")
        self.path = Path(path)
        self.script = script
        self.stale_after = stale_after
        self._owned = False

    def __enter__(self) -> PipelineLock:
        status = self.acquire()
        if not status.acquired:
            raise PipelineLockHeld(status)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def _read(self) -> dict[str, Any] | None:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            logger.warning("pipeline_lock_corrupt", path=str(self.path))
            return None
        if not isinstance(payload, dict) or not isinstance(
            payload.get("timestamp"), (int, float)
        ):
            logger.warning("pipeline_lock_corrupt", path=str(self.path))
            return None
        return payload

    def acquire(self) -> LockStatus:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(self.path):
            current = self._read()
            if current is not None:
                age = time.time() - current["timestamp"]
                if age < self.stale_after:
                    return LockStatus(
                        acquired=False,
                        holder=current.get("script"),
                        pid=current.get("pid"),
                        age_seconds=age,
                    )
                logger.warning(
                    "pipeline_lock_stale",
                    holder=current.get("script"),
                    pid=current.get("pid"),
                    age_seconds=round(age),
                )

            record = {"pid": os.getpid(), "script": self.script, "timestamp": time.time()}
            self.path.write_text(json.dumps(record) + "\n", encoding="utf-8")
            self._owned = True
        logger.info("pipeline_lock_acquired", script=self.script, pid=os.getpid())
        return LockStatus(acquired=True, holder=self.script, pid=os.getpid(), age_seconds=0.0)

    def release(self) -> None:
        """Remove the lock file if this process still owns it."""
        if not self._owned:
            return
        with FileLock(self.path):
            current = self._read()
            if current and current.get("pid") == os.getpid() and current.get("script") == self.script:
                self.path.unlink(missing_ok=True)
            self._owned = False
        logger.info("pipeline_lock_released", script=self.script)


__all__ = ["FileLock", "LockStatus", "PipelineLock", "PipelineLockHeld"]
