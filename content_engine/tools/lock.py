from __future__ import annotations

from pathlib import Path
import os
import time
import uuid

from content_engine.models.errors import PipelineLockedError


class RunLock:
    """
    One lock file per key (a site id). Creation is atomic; a lock older than
    `timeout_seconds` is treated as stale and broken. The file holds an owner
    token, and release only removes a file that still carries ours.
    """

    def __init__(self, key: object, lock_dir: str = "data/locks", timeout_seconds: int = 60 * 60):
        self.path = Path(lock_dir) / f"site-{key}.lock"
        self.timeout_seconds = timeout_seconds
        self.token = f"{os.getpid()}:{uuid.uuid4().hex}"

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(self.token)
        return True

    def held(self) -> bool:
        try:
            return self.path.read_text(encoding="utf-8") == self.token
        except FileNotFoundError:
            return False

    def __enter__(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self._try_create():
            return self

        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            age = self.timeout_seconds
        if age < self.timeout_seconds:
            raise PipelineLockedError(f"Another run is already in progress ({self.path.name}).")

        # stale lock
        self.path.unlink(missing_ok=True)
        if not self._try_create():
            raise PipelineLockedError(f"Another run is already in progress ({self.path.name}).")
        return self

    def __exit__(self, exc_type, exc, tb):
        # a stale-lock breaker may own the file by now
        if self.held():
            self.path.unlink(missing_ok=True)
