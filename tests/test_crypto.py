"""Tests for the crypto engine."""

import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from vanish.crypto import (
    CryptoEngine,
    HEADER_SIZE,
    MAGIC,
    MIN_ITERATIONS,
    decrypt,
    encrypt,
)
from vanish.errors import DecryptionError

# Keep the KDF cheap in tests; the format records whatever was used
FAST = MIN_ITERATIONS


def test_roundtrip():
    """Encrypt then decrypt returns the original bytes."""
    for size in [0, 1, 10, 1000, 100_000]:
        data = os.urandom(size)
        blob = encrypt(data, "platform-secret", FAST)
        assert decrypt(blob, "platform-secret") == data
    print("  [PASS] Crypto roundtrip")


def test_ciphertext_is_self_describing():
    """The blob starts with the magic and is salted per call."""
    a = encrypt(b"same input", "s", FAST)
    b = encrypt(b"same input", "s", FAST)
    assert a.startswith(MAGIC)
    assert a != b
    assert len(a) == HEADER_SIZE + len(b"same input") + 16
    print("  [PASS] Ciphertext is self-describing")


def test_wrong_secret_fails():
    """A different secret raises DecryptionError."""
    blob = encrypt(b"top secret", "right", FAST)
    with pytest.raises(DecryptionError):
        decrypt(blob, "wrong")
    print("  [PASS] Wrong secret rejected")


def test_corruption_fails():
    """Flipping a bit in header or body fails authentication."""
    blob = bytearray(encrypt(b"payload bytes", "s", FAST))

    body = bytearray(blob)
    body[-1] ^= 0x01
    with pytest.raises(DecryptionError):
        decrypt(bytes(body), "s")

    # Salt byte: header is associated data, so this must fail too
    salt = bytearray(blob)
    salt[10] ^= 0x01
    with pytest.raises(DecryptionError):
        decrypt(bytes(salt), "s")
    print("  [PASS] Corruption rejected")


def test_truncation_and_format_mismatch():
    """Short blobs, foreign magic and absurd iteration counts are rejected."""
    blob = encrypt(b"payload", "s", FAST)

    with pytest.raises(DecryptionError):
        decrypt(blob[:HEADER_SIZE], "s")
    with pytest.raises(DecryptionError):
        decrypt(b"", "s")
    with pytest.raises(DecryptionError):
        decrypt(b"XXXX" + blob[4:], "s")

    # Version byte
    with pytest.raises(DecryptionError):
        decrypt(blob[:4] + b"\x09" + blob[5:], "s")

    # Iterations forced to 0xFFFFFFFF
    with pytest.raises(DecryptionError):
        decrypt(blob[:5] + b"\xff\xff\xff\xff" + blob[9:], "s")
    print("  [PASS] Truncation and format mismatch rejected")


def test_encrypt_rejects_bad_iterations():
    with pytest.raises(ValueError):
        encrypt(b"x", "s", iterations=1)


def test_engine_rotation():
    """New secret encrypts; old ciphertexts still decrypt; order is respected."""
    old_engine = CryptoEngine(["secret-2023"], iterations=FAST)
    old_blob = old_engine.encrypt(b"minted before rotation")

    engine = CryptoEngine(["secret-2024", "secret-2023"], iterations=FAST)
    new_blob = engine.encrypt(b"minted after rotation")

    assert engine.decrypt(old_blob) == b"minted before rotation"
    assert engine.decrypt(new_blob) == b"minted after rotation"
    assert engine.identify_secret(new_blob) == 0
    assert engine.identify_secret(old_blob) == 1

    # Once the old secret is retired, old links stop working
    retired = CryptoEngine(["secret-2024"], iterations=FAST)
    with pytest.raises(DecryptionError):
        retired.decrypt(old_blob)
    print("  [PASS] Secret rotation")


def test_engine_requires_a_secret():
    with pytest.raises(ValueError):
        CryptoEngine([])
    with pytest.raises(ValueError):
        CryptoEngine([""])


if __name__ == "__main__":
    print("Testing crypto engine...\n")
    test_roundtrip()
    test_ciphertext_is_self_describing()
    test_wrong_secret_fails()
    test_corruption_fails()
    test_truncation_and_format_mismatch()
    test_encrypt_rejects_bad_iterations()
    test_engine_rotation()
    test_engine_requires_a_secret()
    print(f"\n{'='*50}")
    print("All crypto tests passed!")
