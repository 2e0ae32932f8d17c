"""
Share Envelope
The record that binds a ciphertext to its expiry and download policy.

An envelope is published to the content store as flat, versioned JSON.
Its content identifier is the share token, so the envelope is write-once
by construction: change any field and you get a different token. The one
field that moves, downloadsConsumed, is tracked per token in the
consumption ledger and overlaid onto the envelope at read time.

Validity is derived, never stored:
  - count: downloads_consumed < download_limit
  - time:  now < created_at + duration   (Duration policies only)
Either failing is enough to make the share EXPIRED or CONSUMED.
"""

import json
from dataclasses import dataclass, replace
from enum import Enum

from vanish.errors import MalformedEnvelope

SCHEMA_VERSION = 1

_HOUR_MS = 60 * 60 * 1000

# Download limit presets offered by the upload form
UNLIMITED_DOWNLOADS = 99999
DOWNLOAD_LIMIT_CHOICES = (1, 3, UNLIMITED_DOWNLOADS)

DEFAULT_MIME_TYPE = "application/octet-stream"


class ExpiryPolicy(Enum):
    """How long a share lives. Exactly one per envelope."""
    ONE_TIME = "one-time"
    HOUR = "1h"
    DAY = "24h"
    WEEK = "7d"

    @property
    def duration_ms(self) -> int | None:
        """Lifetime in milliseconds, or None for ONE_TIME."""
        return _DURATIONS_MS.get(self)


_DURATIONS_MS = {
    ExpiryPolicy.HOUR: _HOUR_MS,
    ExpiryPolicy.DAY: 24 * _HOUR_MS,
    ExpiryPolicy.WEEK: 7 * 24 * _HOUR_MS,
}


class ShareState(Enum):
    """Lifecycle state. CONSUMED and EXPIRED are terminal."""
    ACTIVE = "active"
    CONSUMED = "consumed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class FileAttributes:
    """Descriptive metadata of the plaintext. Display only, never trusted."""
    name: str
    mime_type: str = DEFAULT_MIME_TYPE
    size_bytes: int = 0


@dataclass(frozen=True)
class FileManifest:
    """What a recipient sees before downloading. No ciphertext, no key."""
    name: str
    mime_type: str
    size_bytes: int
    created_at: int
    expires_at: int | None
    expiry_policy: ExpiryPolicy
    downloads_remaining: int


@dataclass(frozen=True)
class ShareEnvelope:
    ciphertext_ref: str
    original_name: str
    mime_type: str
    size_bytes: int
    created_at: int
    expiry_policy: ExpiryPolicy
    download_limit: int
    downloads_consumed: int = 0
    schema_version: int = SCHEMA_VERSION

    def expires_at(self) -> int | None:
        """Epoch milliseconds after which the share is dead, or None."""
        duration = self.expiry_policy.duration_ms
        if duration is None:
            return None
        return self.created_at + duration

    def state(self, now: int) -> ShareState:
        """Evaluate both invariants at the given time (epoch ms)."""
        if self.downloads_consumed >= self.download_limit:
            return ShareState.CONSUMED
        expires_at = self.expires_at()
        if expires_at is not None and now >= expires_at:
            return ShareState.EXPIRED
        return ShareState.ACTIVE

    def with_consumed(self, consumed: int) -> "ShareEnvelope":
        """Copy with the authoritative download counter applied."""
        return replace(self, downloads_consumed=consumed)

    def manifest(self) -> FileManifest:
        return FileManifest(
            name=self.original_name,
            mime_type=self.mime_type,
            size_bytes=self.size_bytes,
            created_at=self.created_at,
            expires_at=self.expires_at(),
            expiry_policy=self.expiry_policy,
            downloads_remaining=max(self.download_limit - self.downloads_consumed, 0),
        )

    def to_dict(self) -> dict:
        return {
            "schemaVersion": self.schema_version,
            "originalName": self.original_name,
            "mimeType": self.mime_type,
            "sizeBytes": self.size_bytes,
            "createdAt": self.created_at,
            "expiryPolicy": self.expiry_policy.value,
            "downloadLimit": self.download_limit,
            "downloadsConsumed": self.downloads_consumed,
            "ciphertextRef": self.ciphertext_ref,
        }

    def to_bytes(self) -> bytes:
        """Canonical JSON encoding. Equal envelopes produce equal bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: dict) -> "ShareEnvelope":
        """
        Parse a wire record. Unknown keys are ignored.

        Raises:
            MalformedEnvelope: Missing or ill-typed required fields,
                or a combination of fields no builder would produce.
        """
        if not isinstance(data, dict):
            raise MalformedEnvelope("envelope is not a JSON object")

        schema_version = _require(data, "schemaVersion", int)
        ciphertext_ref = _require(data, "ciphertextRef", str)
        created_at = _require(data, "createdAt", int)
        policy_value = _require(data, "expiryPolicy", str)
        download_limit = _require(data, "downloadLimit", int)

        downloads_consumed = _optional(data, "downloadsConsumed", int, 0)
        original_name = _optional(data, "originalName", str, "")
        mime_type = _optional(data, "mimeType", str, DEFAULT_MIME_TYPE)
        size_bytes = _optional(data, "sizeBytes", int, 0)

        if not ciphertext_ref:
            raise MalformedEnvelope("ciphertextRef is empty")
        try:
            policy = ExpiryPolicy(policy_value)
        except ValueError:
            raise MalformedEnvelope(f"unknown expiryPolicy {policy_value!r}") from None
        if download_limit <= 0:
            raise MalformedEnvelope("downloadLimit must be positive")
        if policy is ExpiryPolicy.ONE_TIME and download_limit != 1:
            raise MalformedEnvelope("one-time envelope with downloadLimit != 1")
        if downloads_consumed < 0:
            raise MalformedEnvelope("downloadsConsumed is negative")
        if size_bytes < 0:
            raise MalformedEnvelope("sizeBytes is negative")

        return cls(
            ciphertext_ref=ciphertext_ref,
            original_name=original_name,
            mime_type=mime_type,
            size_bytes=size_bytes,
            created_at=created_at,
            expiry_policy=policy,
            download_limit=download_limit,
            downloads_consumed=downloads_consumed,
            schema_version=schema_version,
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "ShareEnvelope":
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedEnvelope(f"envelope is not valid JSON: {e}") from None
        return cls.from_dict(data)


def _check_type(key: str, value, kind: type):
    # bool is an int subclass; a flag is never a valid count or timestamp
    if isinstance(value, bool) or not isinstance(value, kind):
        raise MalformedEnvelope(f"{key} must be {kind.__name__}")
    return value


def _require(data: dict, key: str, kind: type):
    if key not in data or data[key] is None:
        raise MalformedEnvelope(f"missing required field {key}")
    return _check_type(key, data[key], kind)


def _optional(data: dict, key: str, kind: type, default):
    if data.get(key) is None:
        return default
    return _check_type(key, data[key], kind)


def check_download_limit(limit) -> int:
    """Raise ValueError unless limit is a positive int (not a bool, not a float)."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ValueError(f"download limit must be a positive integer, got {limit!r}")
    return limit


def build(
    file_attrs: FileAttributes,
    expiry_choice: ExpiryPolicy | str,
    download_limit_choice: int,
    ciphertext_ref: str,
    now: int,
) -> ShareEnvelope:
    """
    Build a fresh envelope for a newly stored ciphertext.

    ONE_TIME always wins over the numeric limit: the envelope gets
    download_limit = 1 whatever was chosen alongside it.

    Args:
        file_attrs: Name, type and size of the plaintext.
        expiry_choice: An ExpiryPolicy or its wire value ("1h", ...).
        download_limit_choice: Requested download cap. Must be positive.
        ciphertext_ref: Content identifier of the stored ciphertext.
        now: Creation time, epoch milliseconds.

    Raises:
        ValueError: Limit not a positive int, empty ciphertext_ref, unknown policy.
    """
    policy = ExpiryPolicy(expiry_choice)
    check_download_limit(download_limit_choice)
    if not ciphertext_ref:
        raise ValueError("ciphertext_ref is required")

    limit = 1 if policy is ExpiryPolicy.ONE_TIME else download_limit_choice

    return ShareEnvelope(
        ciphertext_ref=ciphertext_ref,
        original_name=file_attrs.name,
        mime_type=file_attrs.mime_type or DEFAULT_MIME_TYPE,
        size_bytes=file_attrs.size_bytes,
        created_at=int(now),
        expiry_policy=policy,
        download_limit=limit,
    )
