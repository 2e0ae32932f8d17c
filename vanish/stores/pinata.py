"""
Pinata / IPFS store.
Blobs pinned to IPFS through Pinata, read back through an IPFS gateway.

IPFS is content-addressed and append-only: a pinned blob is addressed
by its CID forever and nothing here ever unpins. That matches the share
model exactly: orphaned ciphertexts are just unreachable pins.

Every request carries a timeout. Timeouts, connection errors and 5xx
responses are StoreUnavailable (retryable); a gateway 404 is NotFound.
Response bodies are never logged; they may echo payload data.
"""

import logging
import re

import requests

from vanish.errors import NotFound, StoreUnavailable
from vanish.stores.base import ContentStore

logger = logging.getLogger(__name__)

PINATA_API = "https://api.pinata.cloud"
DEFAULT_GATEWAY = "https://gateway.pinata.cloud"

# CIDv0 (base58 "Qm...") and CIDv1 (base32 "b...") are both plain alphanumerics
_CID_PATTERN = re.compile(r"^[A-Za-z0-9]{32,128}$")


class PinataStore(ContentStore):
    """
    IPFS pinning via Pinata.

    Authenticate with either a JWT or the legacy key pair.

    Args:
        jwt: Pinata JWT (preferred).
        api_key: Legacy Pinata API key.
        secret_api_key: Legacy Pinata secret key.
        gateway: IPFS gateway base URL used for reads.
        api_url: Pinata API base URL.
        timeout: Seconds allowed per HTTP request.
    """

    def __init__(
        self,
        jwt: str = None,
        api_key: str = None,
        secret_api_key: str = None,
        gateway: str = DEFAULT_GATEWAY,
        api_url: str = PINATA_API,
        timeout: float = 30.0,
    ):
        if not jwt and not (api_key and secret_api_key):
            raise ValueError("PinataStore needs a jwt or an api_key/secret_api_key pair")
        self.gateway = gateway.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._jwt = jwt
        self._api_key = api_key
        self._secret_api_key = secret_api_key

    def _headers(self) -> dict:
        if self._jwt:
            return {"Authorization": f"Bearer {self._jwt}"}
        return {
            "pinata_api_key": self._api_key,
            "pinata_secret_api_key": self._secret_api_key,
        }

    def put(self, data: bytes) -> str:
        try:
            response = requests.post(
                f"{self.api_url}/pinning/pinFileToIPFS",
                files={"file": ("blob", data, "application/octet-stream")},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Pinata upload failed: %s", e.__class__.__name__)
            raise StoreUnavailable(f"pinata upload failed: {e.__class__.__name__}") from e

        if response.status_code != 200:
            logger.error("Pinata upload rejected, status %d", response.status_code)
            raise StoreUnavailable(f"pinata upload rejected with status {response.status_code}")

        try:
            cid = response.json()["IpfsHash"]
        except (ValueError, KeyError, TypeError) as e:
            raise StoreUnavailable("pinata response has no IpfsHash") from e

        logger.debug("Pinned %d bytes as %s", len(data), cid[:8])
        return cid

    def get(self, cid: str) -> bytes:
        if not _CID_PATTERN.match(cid):
            raise NotFound(f"not a content id: {cid[:8]!r}")

        try:
            response = requests.get(f"{self.gateway}/ipfs/{cid}", timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Gateway fetch failed for %s: %s", cid[:8], e.__class__.__name__)
            raise StoreUnavailable(f"gateway fetch failed: {e.__class__.__name__}") from e

        if response.status_code == 404:
            raise NotFound(f"no blob {cid[:8]}")
        if response.status_code != 200:
            logger.warning("Gateway returned status %d for %s", response.status_code, cid[:8])
            raise StoreUnavailable(f"gateway returned status {response.status_code}")
        return response.content

    def is_available(self) -> bool:
        """Check credentials against Pinata's auth test endpoint."""
        try:
            response = requests.get(
                f"{self.api_url}/data/testAuthentication",
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException:
            return False
        return response.status_code == 200

    def get_info(self) -> dict:
        return {
            "store": "pinata",
            "api_url": self.api_url,
            "gateway": self.gateway,
            "auth": "jwt" if self._jwt else "api_key",
        }
