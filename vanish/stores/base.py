"""
Base classes for storage backends.

Two seams, deliberately separate:
  ContentStore       — append-only, content-addressed blobs (ciphertext, envelopes)
  ConsumptionLedger  — the single mutable counter per share token

Content-addressed storage can't hold a counter: rewriting the envelope
would change its address. The ledger is the one place that needs a true
atomic read-modify-write, and it is the only thing that gets one.
"""

import hashlib
from abc import ABC, abstractmethod


def content_id(data: bytes) -> str:
    """SHA-256 content identifier used by the local stores."""
    return hashlib.sha256(data).hexdigest()


class ContentStore(ABC):
    """Abstract base class for content-addressed blob stores."""

    @abstractmethod
    def put(self, data: bytes) -> str:
        """
        Store a blob.

        Returns:
            The blob's content identifier.

        Raises:
            StoreUnavailable: The store could not be written in time.
        """

    @abstractmethod
    def get(self, cid: str) -> bytes:
        """
        Fetch a blob by content identifier.

        Raises:
            NotFound: No blob with that identifier.
            StoreUnavailable: The store could not be read in time.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this store is reachable."""

    @abstractmethod
    def get_info(self) -> dict:
        """Get metadata about this store (kind, location, status)."""


class ConsumptionLedger(ABC):
    """Abstract base class for per-token download counters."""

    @abstractmethod
    def consumed(self, token: str) -> int:
        """Downloads recorded for a token. 0 if never consumed."""

    @abstractmethod
    def compare_and_swap(self, token: str, expected: int, new: int) -> bool:
        """
        Atomically set the counter to new if it currently equals expected.

        Linearizable per token: of N concurrent calls with the same
        expected value, at most one returns True.

        Returns:
            True if the swap committed, False if the counter had moved.

        Raises:
            Busy: The per-token lock could not be taken in time.
        """

    @abstractmethod
    def get_info(self) -> dict:
        """Get metadata about this ledger."""
