"""
PIV Token Contract
==================

The operations the envelope protocol needs from a hardware token, and the
transient records produced while enumerating tokens.

Security Properties:
- Private keys never leave the token: only exchange/decrypt are exposed
- Descriptors and sessions never expose the PIN
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Sequence

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec

from pivseal.core.crypto.key_agreement import PublicKey, fingerprint_key
from pivseal.core.errors import UnsupportedKeyError


class Slot(Enum):
    """PIV key slots (NIST SP 800-73)."""
    AUTHENTICATION = 0x9A
    SIGNATURE = 0x9C
    KEY_MANAGEMENT = 0x9D
    CARD_AUTH = 0x9E

    @property
    def label(self) -> str:
        return f"{self.name} ({self.value:02X})"


@dataclass(frozen=True, slots=True)
class SlotContents:
    """Public material read from a provisioned slot."""
    public_key: PublicKey
    certificate: Optional[x509.Certificate] = None


class TokenSession(Protocol):
    """An open, exclusive session with one token."""

    def serial(self) -> int:
        ...

    def version(self) -> str:
        ...

    def read_slot(self, slot: Slot) -> SlotContents:
        """Raises SlotNotProvisionedError if the slot holds no key."""
        ...

    def login(self, pin: Optional[str] = None) -> None:
        """Verify the given PIN, or the one supplied to open(). Raises AuthenticationError on rejection."""
        ...

    def exchange(self, slot: Slot, peer_public_key: ec.EllipticCurvePublicKey) -> bytes:
        """ECDH on the token with the slot's private key."""
        ...

    def decrypt(self, slot: Slot, ciphertext: bytes) -> bytes:
        """RSA PKCS#1 v1.5 decryption on the token with the slot's private key."""
        ...

    def close(self) -> None:
        ...


class TokenBackend(Protocol):
    """Enumerates and opens tokens."""

    def list_readers(self) -> Sequence[str]:
        ...

    def open(self, reader: str, pin: Optional[str] = None, verbose: bool = False) -> TokenSession:
        ...


@dataclass(slots=True)
class DeviceDescriptor:
    """
    Information read from one token during enumeration.

    Not persisted. `selected` is only meaningful in inventories.
    """
    reader: str
    serial: int = 0
    version: str = ""
    slot: Optional[Slot] = None
    public_key: Optional[PublicKey] = None
    certificate: Optional[x509.Certificate] = None
    selected: bool = False

    @property
    def key_id(self) -> Optional[str]:
        """Fingerprint of the slot public key, if one was read."""
        if self.public_key is None:
            return None
        try:
            return fingerprint_key(self.public_key)
        except UnsupportedKeyError:
            return f"Unsupported Key: {type(self.public_key).__name__}"

    def __str__(self) -> str:
        return (
            f"{self.reader}\n"
            f"\tversion:  {self.version}\n"
            f"\tserial:   {self.serial}\n"
            f"\tselected: {str(self.selected).lower()}\n"
            f"\tslot:     {self.slot.label if self.slot else '-'}\n"
            f"\tpubkey:   {self.key_id or '-'}"
        )


@dataclass(frozen=True, slots=True)
class CandidateError:
    """A per-device failure recorded by an inventory scan."""
    reader: str
    message: str
    serial: Optional[int] = None

    def __str__(self) -> str:
        if self.serial is not None:
            return f"{self.reader} (serial {self.serial}): {self.message}"
        return f"{self.reader}: {self.message}"


@dataclass(slots=True)
class Inventory:
    """Result of a best-effort scan over all attached tokens."""
    devices: list[DeviceDescriptor] = field(default_factory=list)
    errors: list[CandidateError] = field(default_factory=list)
    selected: bool = False


class SlotDecrypter:
    """
    Decrypter bound to one slot of an open token session.

    Implements the key-agreement Decrypter interface by delegating the
    private-key operations to the token.
    """

    __slots__ = ("_session", "_slot", "_public_key")

    def __init__(self, session: TokenSession, slot: Slot, public_key: PublicKey) -> None:
        self._session = session
        self._slot = slot
        self._public_key = public_key

    def public_key(self) -> PublicKey:
        return self._public_key

    def exchange(self, peer_public_key: ec.EllipticCurvePublicKey) -> bytes:
        return self._session.exchange(self._slot, peer_public_key)

    def decrypt(self, ciphertext: bytes) -> bytes:
        return self._session.decrypt(self._slot, ciphertext)

    def __repr__(self) -> str:
        return f"SlotDecrypter(slot={self._slot.label})"
