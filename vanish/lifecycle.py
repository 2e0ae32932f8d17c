"""
Share Lifecycle Manager
Creates shares, answers "is this link still good?", and hands out
plaintext at most as many times as the sender allowed.

Flow for creating a share:
1. Encrypt the file under the newest platform secret
2. Store the ciphertext (content-addressed)
3. Build the envelope around the ciphertext's CID
4. Store the envelope; its CID is the share token

Flow for consuming a share:
1. Fetch the envelope, overlay the ledger's download counter
2. Validate: not past its time, quota not used up
3. Claim one download with a compare-and-swap on the ledger
4. Only then fetch and decrypt the ciphertext

Recording the download before releasing data means racing requests can
never get more plaintext than there are units of quota: each unit has
exactly one CAS winner. A failure after the claim costs the recipient a
download; it never gives anyone an extra one.

States: ACTIVE → CONSUMED | EXPIRED. Nothing leaves a terminal state.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from urllib.parse import urlparse

from vanish.crypto import CryptoEngine
from vanish.envelope import (
    DEFAULT_MIME_TYPE,
    ExpiryPolicy,
    FileAttributes,
    FileManifest,
    ShareEnvelope,
    ShareState,
    build,
    check_download_limit,
)
from vanish.errors import Busy, Expired, NotFound, UploadFailed
from vanish.stores.base import ConsumptionLedger, ContentStore

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 25 * 1024 * 1024  # 25 MB
DEFAULT_ORIGIN = "http://localhost:8080"
LINK_PREFIX = "/file/"


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ShareLifecycleManager:
    """
    Orchestrates create / resolve / consume over a store and a ledger.

    Holds no per-share state of its own: everything that matters lives in
    the content store (envelopes, ciphertexts) and the ledger (counters),
    so any number of managers can serve the same shares.

    Args:
        crypto: Engine holding the platform secrets.
        store: Content-addressed blob store.
        ledger: Per-token download counters.
        origin: Base URL for share links.
        max_file_size: Largest plaintext create() accepts, in bytes.
        crypto_timeout: Seconds allowed per encrypt/decrypt, counted from
            submission: time queued behind busy workers counts too.
        crypto_workers: Size of the crypto thread pool. A timed-out
            transform is not interrupted and keeps its worker until the
            KDF and cipher finish, so size this above the expected number
            of concurrent slow transforms.
        cas_timeout: Seconds to keep retrying a contended claim.
        clock: Returns "now" in epoch ms when a caller doesn't supply it.
    """

    def __init__(
        self,
        crypto: CryptoEngine,
        store: ContentStore,
        ledger: ConsumptionLedger,
        origin: str = DEFAULT_ORIGIN,
        max_file_size: int = MAX_FILE_SIZE,
        crypto_timeout: float = 60.0,
        crypto_workers: int = 4,
        cas_timeout: float = 5.0,
        clock=epoch_ms,
    ):
        self.crypto = crypto
        self.store = store
        self.ledger = ledger
        self.origin = origin.rstrip("/")
        self.max_file_size = max_file_size
        self.crypto_timeout = crypto_timeout
        self.cas_timeout = cas_timeout
        self.clock = clock
        self._executor = ThreadPoolExecutor(max_workers=crypto_workers, thread_name_prefix="vanish-crypto")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        """Release the crypto worker threads."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _now(self, now: int | None) -> int:
        return self.clock() if now is None else int(now)

    def _transform(self, fn, data: bytes) -> bytes:
        """Run a crypto transform on a worker thread, bounded by crypto_timeout."""
        future = self._executor.submit(fn, data)
        try:
            return future.result(timeout=self.crypto_timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning("Crypto transform exceeded %.1fs", self.crypto_timeout)
            raise Busy(f"crypto transform timed out after {self.crypto_timeout}s") from None

    # ── Create ───────────────────────────────────────────────────────

    def create(
        self,
        data: bytes,
        name: str,
        mime_type: str = DEFAULT_MIME_TYPE,
        expiry: ExpiryPolicy | str = ExpiryPolicy.ONE_TIME,
        download_limit: int = 1,
        now: int = None,
    ) -> str:
        """
        Encrypt and publish a file.

        Args:
            data: The plaintext file contents.
            name: Original file name (display only).
            mime_type: Original MIME type (display only).
            expiry: ExpiryPolicy or its wire value ("one-time", "1h", "24h", "7d").
            download_limit: Download cap. Ignored (forced to 1) for one-time shares.
            now: Creation time in epoch ms. Defaults to the clock.

        Returns:
            The share token (the envelope's content identifier).

        Raises:
            ValueError: File too large, bad policy, limit not a positive int.
            Busy, StoreUnavailable: Transient failure before anything was published.
            UploadFailed: Ciphertext was stored but the envelope could not be.
        """
        if len(data) > self.max_file_size:
            raise ValueError(f"File too large: {len(data)} bytes (max {self.max_file_size})")
        policy = ExpiryPolicy(expiry)
        check_download_limit(download_limit)
        created_at = self._now(now)

        ciphertext = self._transform(self.crypto.encrypt, data)
        ciphertext_ref = self.store.put(ciphertext)

        # From here on a failure leaves an orphaned ciphertext behind.
        # The store is append-only, so it stays; the caller gets no token.
        try:
            attrs = FileAttributes(name=name, mime_type=mime_type, size_bytes=len(data))
            envelope = build(attrs, policy, download_limit, ciphertext_ref, created_at)
            token = self.store.put(envelope.to_bytes())
        except Exception as e:
            logger.error(
                "Envelope write failed, ciphertext %s orphaned: %s",
                ciphertext_ref[:8], e.__class__.__name__,
            )
            raise UploadFailed(f"envelope write failed: {e}") from e

        logger.info(
            "Share created: %s (%d bytes, expiry=%s, limit=%d)",
            token[:8], len(data), policy.value, envelope.download_limit,
        )
        return token

    # ── Resolve / consume ────────────────────────────────────────────

    def _load(self, token: str) -> ShareEnvelope:
        """Fetch the envelope and apply the authoritative download counter."""
        envelope = ShareEnvelope.from_bytes(self.store.get(token))
        return envelope.with_consumed(self.ledger.consumed(token))

    def _validate(self, token: str, envelope: ShareEnvelope, now: int):
        state = envelope.state(now)
        if state is not ShareState.ACTIVE:
            logger.info("Share %s rejected: %s", token[:8], state.value)
            raise Expired(f"share is {state.value}")

    def resolve(self, token: str, now: int = None) -> FileManifest:
        """
        Describe a share without consuming it.

        Read-only: viewing a share page never counts as a download.

        Raises:
            NotFound, Expired, MalformedEnvelope
        """
        now = self._now(now)
        envelope = self._load(token)
        self._validate(token, envelope, now)
        logger.debug("Share %s resolved (%d remaining)", token[:8],
                     envelope.download_limit - envelope.downloads_consumed)
        return envelope.manifest()

    def _claim(self, token: str, envelope: ShareEnvelope) -> int:
        """
        Record one download. Returns the new counter value.

        Loops on compare-and-swap: a lost race re-reads the counter and
        tries again until the quota is gone (Expired) or cas_timeout
        runs out (Busy).
        """
        deadline = time.monotonic() + self.cas_timeout
        expected = envelope.downloads_consumed

        while True:
            if expected >= envelope.download_limit:
                logger.info("Share %s rejected: quota taken by a concurrent download", token[:8])
                raise Expired("share is consumed")
            if self.ledger.compare_and_swap(token, expected, expected + 1):
                return expected + 1

            logger.debug("Claim on %s lost a race at %d", token[:8], expected)
            if time.monotonic() >= deadline:
                raise Busy(f"claim on {token[:8]} still contended after {self.cas_timeout}s")
            expected = self.ledger.consumed(token)

    def consume(self, token: str, now: int = None) -> bytes:
        """
        Download and decrypt a share, using up one unit of its quota.

        The download is recorded before the ciphertext is fetched. If the
        fetch or decryption then fails, the unit stays spent.

        Raises:
            NotFound, Expired, MalformedEnvelope, DecryptionError: Terminal.
            Busy, StoreUnavailable: Retry with backoff.
        """
        now = self._now(now)
        envelope = self._load(token)
        self._validate(token, envelope, now)

        consumed = self._claim(token, envelope)
        ciphertext = self.store.get(envelope.ciphertext_ref)
        plaintext = self._transform(self.crypto.decrypt, ciphertext)

        logger.info(
            "Share %s consumed (%d/%d)",
            token[:8], consumed, envelope.download_limit,
        )
        return plaintext

    # ── Links ────────────────────────────────────────────────────────

    def share_link(self, token: str) -> str:
        """Build the public link for a token."""
        return f"{self.origin}{LINK_PREFIX}{token}"

    @staticmethod
    def parse_share_link(link: str) -> str:
        """
        Extract the token from a share link.

        Raises:
            NotFound: The link doesn't point at a share.
        """
        path = urlparse(link).path
        if not path.startswith(LINK_PREFIX):
            raise NotFound("not a share link")
        token = path[len(LINK_PREFIX):].strip("/")
        if not token or "/" in token:
            raise NotFound("not a share link")
        return token

    def get_status(self) -> dict:
        """Report the backends this manager runs on."""
        return {
            "origin": self.origin,
            "secrets": len(self.crypto.secrets),
            "store": self.store.get_info(),
            "store_available": self.store.is_available(),
            "ledger": self.ledger.get_info(),
        }
