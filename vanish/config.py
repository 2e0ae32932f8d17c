"""
Settings — process-wide configuration.

The platform secret is configuration, not a constant: an ordered list,
newest first, so it can be rotated without breaking links that are
still outstanding. Everything can come from the environment:

  VANISH_SECRETS          comma-separated secrets, newest first (required)
  VANISH_ORIGIN           base URL for share links
  VANISH_STORE_DIR        local blob + ledger directory
  VANISH_PINATA_JWT       use Pinata/IPFS for blobs when set
  VANISH_GATEWAY          IPFS gateway for reads
  VANISH_MAX_FILE_SIZE    bytes
  VANISH_KDF_ITERATIONS   PBKDF2 work factor
  VANISH_HTTP_TIMEOUT     seconds
  VANISH_CRYPTO_TIMEOUT   seconds
  VANISH_CRYPTO_WORKERS   crypto thread pool size
  VANISH_LOCK_TIMEOUT     seconds
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from vanish.crypto import PBKDF2_ITERATIONS, CryptoEngine
from vanish.lifecycle import DEFAULT_ORIGIN, MAX_FILE_SIZE, ShareLifecycleManager
from vanish.stores import FileLedger, FileSystemStore, PinataStore
from vanish.stores.pinata import DEFAULT_GATEWAY

logger = logging.getLogger(__name__)

ENV_PREFIX = "VANISH_"


@dataclass
class Settings:
    """Configuration for one deployment."""
    secrets: list[str] = field(default_factory=list)
    origin: str = DEFAULT_ORIGIN
    store_dir: Path = Path("./vanish-store")
    pinata_jwt: str = ""
    gateway: str = DEFAULT_GATEWAY
    max_file_size: int = MAX_FILE_SIZE
    kdf_iterations: int = PBKDF2_ITERATIONS
    http_timeout: float = 30.0
    crypto_timeout: float = 60.0
    crypto_workers: int = 4
    lock_timeout: float = 5.0

    @classmethod
    def from_env(cls, environ: dict = None) -> "Settings":
        """
        Read settings from environment variables.

        Raises:
            ValueError: A numeric variable doesn't parse.
        """
        env = os.environ if environ is None else environ

        def get(name, default):
            return env.get(ENV_PREFIX + name, default)

        def number(name, kind, default):
            raw = get(name, None)
            if raw is None or raw == "":
                return default
            try:
                return kind(raw)
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}{name} must be {kind.__name__}, got {raw!r}") from None

        secrets = [s.strip() for s in get("SECRETS", "").split(",") if s.strip()]

        return cls(
            secrets=secrets,
            origin=get("ORIGIN", DEFAULT_ORIGIN),
            store_dir=Path(get("STORE_DIR", "./vanish-store")),
            pinata_jwt=get("PINATA_JWT", ""),
            gateway=get("GATEWAY", DEFAULT_GATEWAY),
            max_file_size=number("MAX_FILE_SIZE", int, MAX_FILE_SIZE),
            kdf_iterations=number("KDF_ITERATIONS", int, PBKDF2_ITERATIONS),
            http_timeout=number("HTTP_TIMEOUT", float, 30.0),
            crypto_timeout=number("CRYPTO_TIMEOUT", float, 60.0),
            crypto_workers=number("CRYPTO_WORKERS", int, 4),
            lock_timeout=number("LOCK_TIMEOUT", float, 5.0),
        )

    def build_manager(self) -> ShareLifecycleManager:
        """
        Wire a lifecycle manager from these settings.

        Blobs go to Pinata when a JWT is configured, otherwise to
        store_dir/blobs. Counters always live in store_dir/ledger:
        IPFS has no compare-and-swap.

        Raises:
            ValueError: No secrets configured.
        """
        if not self.secrets:
            raise ValueError(f"No platform secret configured (set {ENV_PREFIX}SECRETS)")

        store_dir = Path(self.store_dir)
        if self.pinata_jwt:
            store = PinataStore(jwt=self.pinata_jwt, gateway=self.gateway, timeout=self.http_timeout)
        else:
            store = FileSystemStore(store_dir / "blobs")
        ledger = FileLedger(store_dir / "ledger", lock_timeout=self.lock_timeout)

        logger.info(
            "Using %s store, %d platform secret(s)",
            store.get_info()["store"], len(self.secrets),
        )
        return ShareLifecycleManager(
            crypto=CryptoEngine(self.secrets, iterations=self.kdf_iterations),
            store=store,
            ledger=ledger,
            origin=self.origin,
            max_file_size=self.max_file_size,
            crypto_timeout=self.crypto_timeout,
            crypto_workers=self.crypto_workers,
            cas_timeout=self.lock_timeout,
        )
