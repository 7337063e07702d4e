"""
PivSeal Exceptions
==================

All failures raised by the envelope protocol and device selection.

Security Notes:
    - Messages never include a PIN, a derived key or decrypted plaintext
    - Cryptographic failures are deliberately generic
"""

from __future__ import annotations

from typing import Optional


class PivSealError(Exception):
    """Base class for all PivSeal errors."""
    pass


class NoDevicesError(PivSealError):
    """Raised when enumeration finds no PIV devices at all."""

    def __init__(self, message: str = "No PIV devices detected") -> None:
        super().__init__(message)


class DeviceSelectionError(PivSealError):
    """
    Raised when no attached device satisfies the selection criteria.

    The message carries guidance on how to fix the situation.
    """

    def __init__(
        self,
        message: str = (
            "Unable to use any of the attached PIV devices. Please ensure that "
            "a device with the given serial number is attached or provision the "
            "required slot of at least one attached device to auto-select"
        ),
    ) -> None:
        super().__init__(message)


class DeviceError(PivSealError):
    """Raised when communication with a PIV device fails."""
    pass


class SlotNotProvisionedError(PivSealError):
    """Raised when a PIV slot holds no key. Marks a candidate as unusable."""

    def __init__(self, slot: str) -> None:
        super().__init__(f"Slot {slot} is not provisioned")
        self.slot = slot


class AuthenticationError(PivSealError):
    """Raised when PIN verification on the device fails."""

    def __init__(self, retries_remaining: Optional[int] = None) -> None:
        message = "PIN verification failed"
        if retries_remaining is not None:
            message = f"{message} ({retries_remaining} attempts remaining)"
        super().__init__(message)
        self.retries_remaining = retries_remaining


class KeyMismatchError(PivSealError):
    """
    Raised if an envelope's key id does not match the device key.

    This is a HARD FAILURE, raised before any decryption is attempted.
    """

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            "Private key does not match the public key used to encrypt this "
            f"message: {expected} != {actual}"
        )
        self.expected = expected
        self.actual = actual


class DecryptionError(PivSealError):
    """
    Raised when authenticated decryption fails.

    This is a generic error that doesn't reveal the cause.
    """

    def __init__(self, message: str = "Decryption failed: message authentication failed") -> None:
        super().__init__(message)


class MalformedEnvelopeError(PivSealError, ValueError):
    """Raised when an envelope cannot be parsed or has an unknown scheme."""
    pass


class UnsupportedKeyError(PivSealError):
    """Raised for key families or curves the envelope protocol cannot use."""
    pass


class VaultError(PivSealError):
    """Raised when a Vault API request fails or returns an unexpected response."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
