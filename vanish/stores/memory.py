"""
In-memory store and ledger.
Process-local, thread-safe. For tests, demos and single-process servers.
"""

import threading

from vanish.errors import Busy, NotFound
from vanish.stores.base import ConsumptionLedger, ContentStore, content_id


class MemoryStore(ContentStore):
    """Content-addressed blobs held in a dict."""

    def __init__(self):
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes) -> str:
        cid = content_id(data)
        with self._lock:
            self._blobs.setdefault(cid, bytes(data))
        return cid

    def get(self, cid: str) -> bytes:
        with self._lock:
            data = self._blobs.get(cid)
        if data is None:
            raise NotFound(f"no blob {cid[:8]}")
        return data

    def is_available(self) -> bool:
        return True

    def get_info(self) -> dict:
        with self._lock:
            count = len(self._blobs)
        return {"store": "memory", "blobs": count}


class MemoryLedger(ConsumptionLedger):
    """
    Download counters in a dict, guarded by one lock.

    Args:
        lock_timeout: Seconds to wait for the lock before raising Busy.
    """

    def __init__(self, lock_timeout: float = 5.0):
        self.lock_timeout = lock_timeout
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def _acquire(self, token: str):
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise Busy(f"ledger lock timed out for {token[:8]}")

    def consumed(self, token: str) -> int:
        self._acquire(token)
        try:
            return self._counts.get(token, 0)
        finally:
            self._lock.release()

    def compare_and_swap(self, token: str, expected: int, new: int) -> bool:
        if new < expected:
            raise ValueError("download counter cannot decrease")
        self._acquire(token)
        try:
            if self._counts.get(token, 0) != expected:
                return False
            self._counts[token] = new
            return True
        finally:
            self._lock.release()

    def get_info(self) -> dict:
        return {"ledger": "memory", "tokens": len(self._counts)}
