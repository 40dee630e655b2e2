"""
Single-flight lock providers for the job executor.

InMemoryLockProvider covers one process. LeaseLockProvider stores time-bounded
leases in the shared SQLite database so several processes pointed at the same
file also exclude each other; an expired lease is free to take.
"""

import os
import socket
import threading
import uuid
from datetime import timedelta
from typing import Protocol

from ..database import Database
from ..database.converters import utcnow


class LockProvider(Protocol):
    def acquire(self, name: str) -> bool: ...

    def release(self, name: str) -> None: ...

    def is_locked(self, name: str) -> bool: ...


class InMemoryLockProvider:
    """Process-local named locks. acquire never blocks."""

    def __init__(self):
        self._held: set[str] = set()
        self._mutex = threading.Lock()

    def acquire(self, name: str) -> bool:
        with self._mutex:
            if name in self._held:
                return False
            self._held.add(name)
            return True

    def release(self, name: str) -> None:
        with self._mutex:
            self._held.discard(name)

    def is_locked(self, name: str) -> bool:
        return name in self._held


class LeaseLockProvider:
    """Named leases stored in the job_locks table."""

    def __init__(self, db: Database, ttl_seconds: int = 3600, holder: str | None = None):
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.holder = holder or f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

    def acquire(self, name: str) -> bool:
        lease_until = utcnow() + timedelta(seconds=self.ttl_seconds)
        if self.db.locks.holder(name) == self.holder:
            # Already held by this provider
            return False
        return self.db.locks.acquire(name, self.holder, lease_until)

    def release(self, name: str) -> None:
        self.db.locks.release(name, self.holder)

    def is_locked(self, name: str) -> bool:
        return self.db.locks.holder(name) is not None
