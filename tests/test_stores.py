"""Tests for content stores and consumption ledgers."""

import fcntl
import os
import tempfile
import threading
import time
from pathlib import Path
from unittest import mock

import pytest
import requests

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from vanish.errors import Busy, NotFound, StoreUnavailable
from vanish.stores import (
    FileLedger,
    FileSystemStore,
    MemoryLedger,
    MemoryStore,
    PinataStore,
    content_id,
)


def test_memory_store_put_get():
    store = MemoryStore()
    data = os.urandom(100)
    cid = store.put(data)
    assert cid == content_id(data)
    assert store.get(cid) == data
    assert store.put(data) == cid  # idempotent
    assert store.get_info()["blobs"] == 1

    with pytest.raises(NotFound):
        store.get(content_id(b"never stored"))
    print("  [PASS] Memory store put + get")


def test_filesystem_store_put_get():
    """Filesystem store: content-addressed, idempotent, reports on disk usage."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = FileSystemStore(tmpdir)
        assert store.is_available()

        data = os.urandom(256)
        cid = store.put(data)
        assert (Path(tmpdir) / cid).read_bytes() == data
        assert store.get(cid) == data
        assert store.put(data) == cid

        info = store.get_info()
        assert info["store"] == "filesystem"
        assert info["blobs"] == 1
        assert info["total_bytes_on_disk"] == 256
        print("  [PASS] Filesystem store put + get")


def test_filesystem_store_not_found_and_traversal():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = FileSystemStore(Path(tmpdir) / "blobs")
        (Path(tmpdir) / "secret.txt").write_text("outside")

        with pytest.raises(NotFound):
            store.get(content_id(b"missing"))
        with pytest.raises(NotFound):
            store.get("../secret.txt")
        with pytest.raises(NotFound):
            store.get("")


def test_filesystem_store_detects_corruption():
    """A blob whose bytes no longer hash to its name is unavailable, not missing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = FileSystemStore(tmpdir)
        cid = store.put(b"original")
        (Path(tmpdir) / cid).write_bytes(b"tampered")

        with pytest.raises(StoreUnavailable):
            store.get(cid)
        print("  [PASS] Filesystem store detects corruption")


def _ledgers(tmpdir):
    return [MemoryLedger(lock_timeout=1.0), FileLedger(tmpdir, lock_timeout=1.0)]


def test_ledger_compare_and_swap():
    with tempfile.TemporaryDirectory() as tmpdir:
        for ledger in _ledgers(tmpdir):
            assert ledger.consumed("tok") == 0
            assert ledger.compare_and_swap("tok", 0, 1)
            assert ledger.consumed("tok") == 1
            # Stale expectation loses
            assert not ledger.compare_and_swap("tok", 0, 1)
            assert ledger.compare_and_swap("tok", 1, 2)
            assert ledger.consumed("tok") == 2
            # Other tokens are independent
            assert ledger.consumed("other") == 0

            with pytest.raises(ValueError):
                ledger.compare_and_swap("tok", 2, 1)
    print("  [PASS] Ledger compare-and-swap")


def test_ledger_single_winner_under_race():
    """N threads racing the same CAS: exactly one wins."""
    with tempfile.TemporaryDirectory() as tmpdir:
        for ledger in _ledgers(tmpdir):
            token = f"race-{ledger.__class__.__name__}"
            barrier = threading.Barrier(16)
            wins = []

            def race():
                barrier.wait()
                if ledger.compare_and_swap(token, 0, 1):
                    wins.append(1)

            threads = [threading.Thread(target=race) for _ in range(16)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert len(wins) == 1
            assert ledger.consumed(token) == 1
    print("  [PASS] Ledger single winner under race")


def test_file_ledger_lock_timeout_is_busy():
    """A held lock makes writers give up with Busy after the bounded wait."""
    with tempfile.TemporaryDirectory() as tmpdir:
        ledger = FileLedger(tmpdir, lock_timeout=0.1)

        # Another holder: a separate open file description with the flock taken
        holder = os.open(ledger._lock_file("tok"), os.O_CREAT | os.O_RDWR)
        fcntl.flock(holder, fcntl.LOCK_EX)
        try:
            started = time.monotonic()
            with pytest.raises(Busy):
                ledger.compare_and_swap("tok", 0, 1)
            assert time.monotonic() - started < 2
            assert ledger.consumed("tok") == 0
        finally:
            os.close(holder)

        # Holder gone, lock released with it
        assert ledger.compare_and_swap("tok", 0, 1)
        print("  [PASS] File ledger lock timeout raises Busy")


class SlowReadLedger(FileLedger):
    """Holds the lock a little longer so racing writers really overlap."""

    def _read(self, token):
        value = super()._read(token)
        time.sleep(0.02)
        return value


def test_file_ledger_leftover_lock_file_keeps_single_winner():
    """An old lock file from a crashed holder neither blocks nor lets two writers in."""
    with tempfile.TemporaryDirectory() as tmpdir:
        ledger = SlowReadLedger(tmpdir, lock_timeout=5.0)
        lock = ledger._lock_file("tok")
        lock.touch()
        old = time.time() - 120
        os.utime(lock, (old, old))

        barrier = threading.Barrier(8)
        results = []

        def race():
            barrier.wait()
            results.append(ledger.compare_and_swap("tok", 0, 1))

        threads = [threading.Thread(target=race) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 7
        assert ledger.consumed("tok") == 1
        print("  [PASS] Leftover lock file keeps a single winner")


def test_filesystem_store_put_repairs_corrupted_blob():
    """Re-putting the same content rewrites a blob that rotted on disk."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = FileSystemStore(tmpdir)
        cid = store.put(b"original")
        (Path(tmpdir) / cid).write_bytes(b"tampered")

        with pytest.raises(StoreUnavailable):
            store.get(cid)

        assert store.put(b"original") == cid
        assert store.get(cid) == b"original"
        print("  [PASS] Filesystem store repairs corrupted blob")


def test_memory_ledger_lock_timeout_is_busy():
    ledger = MemoryLedger(lock_timeout=0.05)
    ledger._lock.acquire()
    try:
        with pytest.raises(Busy):
            ledger.compare_and_swap("tok", 0, 1)
    finally:
        ledger._lock.release()


def _response(status, json_body=None, content=b""):
    response = mock.Mock()
    response.status_code = status
    response.content = content
    response.json.return_value = json_body
    return response


CID = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"


def test_pinata_put_and_get():
    store = PinataStore(jwt="test-jwt", timeout=7)

    with mock.patch("vanish.stores.pinata.requests.post") as post:
        post.return_value = _response(200, {"IpfsHash": CID})
        assert store.put(b"ciphertext") == CID
        _, kwargs = post.call_args
        assert kwargs["headers"] == {"Authorization": "Bearer test-jwt"}
        assert kwargs["timeout"] == 7
        assert post.call_args[0][0].endswith("/pinning/pinFileToIPFS")

    with mock.patch("vanish.stores.pinata.requests.get") as get:
        get.return_value = _response(200, content=b"ciphertext")
        assert store.get(CID) == b"ciphertext"
        assert get.call_args[0][0] == f"https://gateway.pinata.cloud/ipfs/{CID}"
        assert get.call_args[1]["timeout"] == 7
    print("  [PASS] Pinata put + get")


def test_pinata_error_mapping():
    """404 is NotFound; timeouts and 5xx are StoreUnavailable."""
    store = PinataStore(api_key="key", secret_api_key="secret")

    with mock.patch("vanish.stores.pinata.requests.get") as get:
        get.return_value = _response(404)
        with pytest.raises(NotFound):
            store.get(CID)

        get.return_value = _response(502)
        with pytest.raises(StoreUnavailable):
            store.get(CID)

        get.side_effect = requests.Timeout()
        with pytest.raises(StoreUnavailable):
            store.get(CID)

    with mock.patch("vanish.stores.pinata.requests.post") as post:
        post.side_effect = requests.ConnectionError()
        with pytest.raises(StoreUnavailable):
            store.put(b"x")

        post.side_effect = None
        post.return_value = _response(401, {"error": "bad key"})
        with pytest.raises(StoreUnavailable):
            store.put(b"x")

        post.return_value = _response(200, {"unexpected": True})
        with pytest.raises(StoreUnavailable):
            store.put(b"x")

    # Not a CID: rejected before any request is made
    with mock.patch("vanish.stores.pinata.requests.get") as get:
        with pytest.raises(NotFound):
            store.get("../../etc/passwd")
        get.assert_not_called()
    print("  [PASS] Pinata error mapping")


def test_pinata_requires_credentials():
    with pytest.raises(ValueError):
        PinataStore()
    with pytest.raises(ValueError):
        PinataStore(api_key="only-half")


def test_pinata_availability():
    store = PinataStore(jwt="test-jwt")
    with mock.patch("vanish.stores.pinata.requests.get") as get:
        get.return_value = _response(200)
        assert store.is_available()
        get.side_effect = requests.ConnectionError()
        assert not store.is_available()
    assert store.get_info()["auth"] == "jwt"


if __name__ == "__main__":
    print("Testing stores and ledgers...\n")
    test_memory_store_put_get()
    test_filesystem_store_put_get()
    test_filesystem_store_detects_corruption()
    test_ledger_compare_and_swap()
    test_ledger_single_winner_under_race()
    test_file_ledger_lock_timeout_is_busy()
    test_file_ledger_leftover_lock_file_keeps_single_winner()
    test_filesystem_store_put_repairs_corrupted_blob()
    test_pinata_put_and_get()
    test_pinata_error_mapping()
    print(f"\n{'='*50}")
    print("Store tests passed!")
