"""
Vanish — Self-Destructing File Shares
Client-side encryption for files shared by link, with one-time and
time-limited expiry.

Three pieces:
1. CryptoEngine — AES-256-GCM under a password-derived key (the lock)
2. ShareEnvelope — binds a ciphertext to its expiry and download limit (the terms)
3. ShareLifecycleManager — enforces the terms, exactly once per download (the guard)

A share is two blobs in a content-addressed store: the ciphertext, and
an envelope pointing at it. The envelope's address is the link. The
only mutable state anywhere is a per-link download counter, and that
counter is advanced before a single byte of plaintext is released.

Usage:
    from vanish import Settings
    manager = Settings.from_env().build_manager()
    token = manager.create(data, "report.pdf", "application/pdf", expiry="24h", download_limit=3)
    link = manager.share_link(token)
"""

from vanish.crypto import CryptoEngine
from vanish.envelope import (
    ExpiryPolicy,
    FileAttributes,
    FileManifest,
    ShareEnvelope,
    ShareState,
    UNLIMITED_DOWNLOADS,
    DOWNLOAD_LIMIT_CHOICES,
)
from vanish.errors import (
    ShareError,
    RetryableError,
    NotFound,
    Expired,
    MalformedEnvelope,
    DecryptionError,
    UploadFailed,
    Busy,
    StoreUnavailable,
)
from vanish.lifecycle import ShareLifecycleManager
from vanish.config import Settings

__version__ = "0.1.0"
__all__ = [
    "CryptoEngine",
    "ExpiryPolicy",
    "FileAttributes",
    "FileManifest",
    "ShareEnvelope",
    "ShareState",
    "UNLIMITED_DOWNLOADS",
    "DOWNLOAD_LIMIT_CHOICES",
    "ShareLifecycleManager",
    "Settings",
    "ShareError",
    "RetryableError",
    "NotFound",
    "Expired",
    "MalformedEnvelope",
    "DecryptionError",
    "UploadFailed",
    "Busy",
    "StoreUnavailable",
]
