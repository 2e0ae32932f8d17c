"""
Share Errors
Every failure a share operation can surface to a caller.

Terminal errors (NotFound, Expired, MalformedEnvelope, DecryptionError,
UploadFailed) are final: retrying will not change the answer.
Retryable errors (Busy, StoreUnavailable) mean "try again later".

str(error) carries technical detail for logs. user_message is what the
end user sees. It is short and never says which rule rejected the share,
so a caller cannot tell "expired by time" from "expired by count".
"""

_GONE = "This link has expired or is no longer available."


class ShareError(Exception):
    """Base class for all share lifecycle failures."""

    retryable = False
    user_message = "Something went wrong. Please try again."


class NotFound(ShareError):
    """The token or a referenced blob is unknown to the store."""

    user_message = _GONE


class Expired(ShareError):
    """The share is past its time limit or its download quota is used up."""

    user_message = _GONE


class MalformedEnvelope(ShareError):
    """The stored envelope is not a valid share record."""

    user_message = "This link is invalid."


class DecryptionError(ShareError):
    """Ciphertext failed authentication: wrong secret, corruption or bad format."""

    user_message = "This file could not be decrypted."


class UploadFailed(ShareError):
    """create() could not publish the share. No token was issued."""

    user_message = "Upload failed. Try again."


class RetryableError(ShareError):
    """Transient failure. Callers should retry with backoff."""

    retryable = True
    user_message = "The service is busy. Please try again in a moment."


class Busy(RetryableError):
    """Lock contention or a timed-out transform."""


class StoreUnavailable(RetryableError):
    """The content store could not be reached in time."""
