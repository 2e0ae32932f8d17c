"""
Filesystem store and ledger.
Blobs and counters under a directory we control. No network, no blockchain.

Blobs are named by their SHA-256 and written via temp file + rename,
so a reader never sees half a blob. Counters get the same treatment,
plus an exclusive flock() per token: the filesystem has no native
compare-and-swap, so we serialize writers instead, with a bounded
wait, never an indefinite one.
"""

import fcntl
import hashlib
import logging
import os
import re
import tempfile
import time
from pathlib import Path

from vanish.errors import Busy, NotFound, StoreUnavailable
from vanish.stores.base import ConsumptionLedger, ContentStore, content_id

logger = logging.getLogger(__name__)

_CID_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def _atomic_write(path: Path, data: bytes):
    """Write data to path so readers see either the old file or the new one."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class FileSystemStore(ContentStore):
    """
    Content-addressed blob directory.

    Args:
        storage_dir: Directory to hold the blobs. Created if missing.
    """

    def __init__(self, storage_dir: str | Path):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, cid: str) -> Path:
        # Anything but a bare hex digest can't name a blob here
        if not _CID_PATTERN.match(cid):
            raise NotFound(f"not a content id: {cid[:8]!r}")
        return self.storage_dir / cid

    def _intact(self, path: Path, cid: str) -> bool:
        try:
            return content_id(path.read_bytes()) == cid
        except OSError:
            return False

    def put(self, data: bytes) -> str:
        cid = content_id(data)
        path = self.storage_dir / cid
        if path.exists():
            if self._intact(path, cid):
                return cid
            logger.warning("Blob %s corrupted on disk, rewriting", cid[:8])
        try:
            _atomic_write(path, data)
        except OSError as e:
            logger.error("Blob write failed for %s: %s", cid[:8], e)
            raise StoreUnavailable(f"write failed: {e}") from e
        return cid

    def get(self, cid: str) -> bytes:
        path = self._path(cid)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise NotFound(f"no blob {cid[:8]}") from None
        except OSError as e:
            logger.error("Blob read failed for %s: %s", cid[:8], e)
            raise StoreUnavailable(f"read failed: {e}") from e

        if content_id(data) != cid:
            logger.error("Blob %s does not match its content id, corrupted on disk", cid[:8])
            raise StoreUnavailable(f"blob {cid[:8]} is corrupted")
        return data

    def is_available(self) -> bool:
        return self.storage_dir.is_dir() and os.access(self.storage_dir, os.W_OK)

    def get_info(self) -> dict:
        blobs = [p for p in self.storage_dir.iterdir() if _CID_PATTERN.match(p.name)]
        return {
            "store": "filesystem",
            "storage_dir": str(self.storage_dir),
            "blobs": len(blobs),
            "total_bytes_on_disk": sum(p.stat().st_size for p in blobs),
        }


class FileLedger(ConsumptionLedger):
    """
    Download counters as small files, one per token.

    Writers for a token serialize on an advisory flock() over a per-token
    lock file. The lock file itself is never removed; the lock lives in
    the open file description, so the OS drops it when a holder exits or
    crashes and there is no stale lock to clean up.

    Args:
        ledger_dir: Directory for counter and lock files.
        lock_timeout: Seconds to wait for a token's lock before raising Busy.
    """

    POLL_INTERVAL = 0.01

    def __init__(self, ledger_dir: str | Path, lock_timeout: float = 5.0):
        self.ledger_dir = Path(ledger_dir)
        self.ledger_dir.mkdir(parents=True, exist_ok=True)
        self.lock_timeout = lock_timeout

    def _key(self, token: str) -> str:
        # Tokens are opaque strings; hash them into safe file names
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def _count_file(self, token: str) -> Path:
        return self.ledger_dir / f"{self._key(token)}.count"

    def _lock_file(self, token: str) -> Path:
        return self.ledger_dir / f"{self._key(token)}.lock"

    def _acquire(self, token: str) -> int:
        """Take the token's exclusive lock. Returns the fd holding it."""
        try:
            fd = os.open(self._lock_file(token), os.O_CREAT | os.O_RDWR, 0o600)
        except OSError as e:
            raise StoreUnavailable(f"ledger lock failed: {e}") from e

        deadline = time.monotonic() + self.lock_timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return fd
            except BlockingIOError:
                pass
            except OSError as e:
                os.close(fd)
                raise StoreUnavailable(f"ledger lock failed: {e}") from e

            if time.monotonic() >= deadline:
                os.close(fd)
                logger.warning("Ledger lock contention on %s, giving up", token[:8])
                raise Busy(f"ledger lock timed out for {token[:8]}")
            time.sleep(self.POLL_INTERVAL)

    def _read(self, token: str) -> int:
        try:
            return int(self._count_file(token).read_text())
        except FileNotFoundError:
            return 0
        except (OSError, ValueError) as e:
            raise StoreUnavailable(f"ledger read failed for {token[:8]}: {e}") from e

    def consumed(self, token: str) -> int:
        # Counter writes are atomic renames, so a lock-free read is consistent
        return self._read(token)

    def compare_and_swap(self, token: str, expected: int, new: int) -> bool:
        if new < expected:
            raise ValueError("download counter cannot decrease")

        fd = self._acquire(token)
        try:
            if self._read(token) != expected:
                return False
            try:
                _atomic_write(self._count_file(token), str(new).encode())
            except OSError as e:
                raise StoreUnavailable(f"ledger write failed for {token[:8]}: {e}") from e
            return True
        finally:
            # Closing the fd releases the flock
            os.close(fd)

    def get_info(self) -> dict:
        return {
            "ledger": "filesystem",
            "ledger_dir": str(self.ledger_dir),
            "tokens": len(list(self.ledger_dir.glob("*.count"))),
        }
