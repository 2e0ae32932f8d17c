"""
Crypto Engine — Password-Based Authenticated Encryption
AES-256-GCM under a key derived from the platform secret.

Every ciphertext carries its own parameters, so the secret is the only
thing a reader needs:

  magic "VNSH" | version | iterations (u32) | salt (16) | nonce (12) | ciphertext+tag

The header is bound to the ciphertext as associated data. Flip one bit
anywhere in the blob and decryption fails as a whole.
No partial plaintext is ever returned.

Secret rotation:
  The engine holds an ordered list of secrets, newest first.
  encrypt() always uses the newest. decrypt() tries each in turn and
  stops at the first one that authenticates, so links minted before a
  rotation keep working for as long as the old secret stays on the list.
"""

import logging
import os
import struct

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from vanish.errors import DecryptionError

logger = logging.getLogger(__name__)

# KDF parameters
PBKDF2_ITERATIONS = 600_000  # OWASP recommended minimum
MIN_ITERATIONS = 1_000
MAX_ITERATIONS = 10_000_000
SALT_SIZE = 16
NONCE_SIZE = 12  # AES-256-GCM standard
KEY_SIZE = 32    # 256 bits

MAGIC = b"VNSH"
FORMAT_VERSION = 1
_HEADER = struct.Struct(">4sBI")
HEADER_SIZE = _HEADER.size + SALT_SIZE + NONCE_SIZE
TAG_SIZE = 16


def derive_key(secret: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """Derive an AES-256 key from a secret using PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret.encode("utf-8"))


def encrypt(plaintext: bytes, secret: str, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Encrypt bytes under a secret.

    Args:
        plaintext: The raw bytes to protect.
        secret: The password the key is derived from.
        iterations: PBKDF2 work factor, recorded in the header.

    Returns:
        The self-describing ciphertext blob.
    """
    if not MIN_ITERATIONS <= iterations <= MAX_ITERATIONS:
        raise ValueError(f"iterations must be in [{MIN_ITERATIONS}, {MAX_ITERATIONS}]")

    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    header = _HEADER.pack(MAGIC, FORMAT_VERSION, iterations) + salt + nonce

    key = derive_key(secret, salt, iterations)
    return header + AESGCM(key).encrypt(nonce, plaintext, header)


def _parse_header(blob: bytes) -> tuple[bytes, int, bytes, bytes]:
    """Split a blob into (header, iterations, salt, nonce) or raise DecryptionError."""
    if len(blob) < HEADER_SIZE + TAG_SIZE:
        raise DecryptionError(f"ciphertext truncated ({len(blob)} bytes)")

    magic, version, iterations = _HEADER.unpack_from(blob)
    if magic != MAGIC:
        raise DecryptionError("not a vanish ciphertext")
    if version != FORMAT_VERSION:
        raise DecryptionError(f"unsupported ciphertext version {version}")
    if not MIN_ITERATIONS <= iterations <= MAX_ITERATIONS:
        raise DecryptionError(f"iteration count {iterations} out of range")

    offset = _HEADER.size
    salt = blob[offset:offset + SALT_SIZE]
    nonce = blob[offset + SALT_SIZE:HEADER_SIZE]
    return blob[:HEADER_SIZE], iterations, salt, nonce


def _open(blob: bytes, header: bytes, iterations: int, salt: bytes, nonce: bytes, secret: str) -> bytes:
    key = derive_key(secret, salt, iterations)
    return AESGCM(key).decrypt(nonce, blob[HEADER_SIZE:], header)


def decrypt(ciphertext: bytes, secret: str) -> bytes:
    """
    Decrypt a blob produced by encrypt().

    Raises:
        DecryptionError: Wrong secret, truncated or corrupted blob,
            or a format this version does not understand.
    """
    header, iterations, salt, nonce = _parse_header(ciphertext)
    try:
        return _open(ciphertext, header, iterations, salt, nonce, secret)
    except InvalidTag:
        raise DecryptionError("authentication failed") from None


class CryptoEngine:
    """
    Encrypts under the newest platform secret, decrypts under any.

    Args:
        secrets: Platform secrets, newest first. Must not be empty.
        iterations: PBKDF2 work factor for new ciphertexts.
    """

    def __init__(self, secrets: list[str], iterations: int = PBKDF2_ITERATIONS):
        secrets = [s for s in secrets if s]
        if not secrets:
            raise ValueError("CryptoEngine requires at least one secret")
        self.secrets = secrets
        self.iterations = iterations

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt with the newest secret."""
        return encrypt(plaintext, self.secrets[0], self.iterations)

    def decrypt(self, ciphertext: bytes) -> bytes:
        """Decrypt with the first secret that authenticates."""
        _, plaintext = self._try_secrets(ciphertext)
        return plaintext

    def identify_secret(self, ciphertext: bytes) -> int:
        """Return the index of the secret that decrypts this blob."""
        index, _ = self._try_secrets(ciphertext)
        return index

    def _try_secrets(self, ciphertext: bytes) -> tuple[int, bytes]:
        # Header parsing is secret-independent, so format errors fail fast
        header, iterations, salt, nonce = _parse_header(ciphertext)

        for index, secret in enumerate(self.secrets):
            try:
                plaintext = _open(ciphertext, header, iterations, salt, nonce, secret)
            except InvalidTag:
                continue
            if index > 0:
                logger.info("Ciphertext opened with rotated secret #%d", index)
            return index, plaintext

        raise DecryptionError(f"no secret out of {len(self.secrets)} authenticates")
