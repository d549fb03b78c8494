from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from app.core.errors import UpstreamBusy


@dataclass
class TurnLease:
    registry: SessionLockRegistry
    session_ids: list[str] = field(default_factory=list)

    def lock(self, session_id: str) -> None:
        if session_id in self.session_ids:
            return
        self.registry.acquire(session_id)
        self.session_ids.append(session_id)

    def release_all(self) -> None:
        while self.session_ids:
            self.registry.release(self.session_ids.pop())


class SessionLockRegistry:
    """Advisory in-flight guard, one entry per session id.

    A second acquire for a held session fails immediately instead of queueing.
    """

    def __init__(self) -> None:
        self._active: dict[str, float] = {}
        self._lock = threading.Lock()

    def try_acquire(self, session_id: str) -> bool:
        with self._lock:
            if session_id in self._active:
                return False
            self._active[session_id] = time.monotonic()
            return True

    def acquire(self, session_id: str) -> None:
        if not self.try_acquire(session_id):
            raise UpstreamBusy(session_id)

    def release(self, session_id: str) -> None:
        with self._lock:
            self._active.pop(session_id, None)

    def is_locked(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._active

    @contextmanager
    def turn(self) -> Iterator[TurnLease]:
        lease = TurnLease(registry=self)
        try:
            yield lease
        finally:
            lease.release_all()
