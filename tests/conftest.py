"""
Shared fixtures: software keys and a fake PIV token backend.
"""

from __future__ import annotations

from typing import Optional

import pytest
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from pivseal.core.device.token import Slot, SlotContents
from pivseal.core.errors import AuthenticationError, DeviceError, SlotNotProvisionedError

DEFAULT_PIN = "123456"


class FakeToken:
    """A PIV token backed by a software private key."""

    def __init__(
        self,
        serial: int,
        private_key=None,
        pin: str = DEFAULT_PIN,
        reader: Optional[str] = None,
        fail_open: bool = False,
        version: str = "5.4.3",
        read_error: Optional[Exception] = None,
    ) -> None:
        self.serial = serial
        self.private_key = private_key
        self.pin = pin
        self.reader = reader or f"Yubico YubiKey OTP+FIDO+CCID {serial:08d}"
        self.fail_open = fail_open
        self.version = version
        self.read_error = read_error
        self.pin_attempts = 3
        self.logins = 0
        self.exchanges = 0
        self.decrypts = 0

    @property
    def public_key(self):
        return self.private_key.public_key() if self.private_key is not None else None


class FakeSession:
    """Session over a FakeToken that reports open/close to its backend."""

    def __init__(self, backend: "FakeBackend", token: FakeToken, pin: Optional[str]) -> None:
        self._backend = backend
        self._token = token
        self._pin = pin
        self.closed = False

    def serial(self) -> int:
        return self._token.serial

    def version(self) -> str:
        return self._token.version

    def read_slot(self, slot: Slot) -> SlotContents:
        if self._token.read_error is not None:
            raise self._token.read_error
        if self._token.private_key is None:
            raise SlotNotProvisionedError(slot.name)
        return SlotContents(public_key=self._token.public_key)

    def login(self, pin: Optional[str] = None) -> None:
        pin = pin or self._pin
        self._token.logins += 1
        if pin != self._token.pin:
            self._token.pin_attempts -= 1
            raise AuthenticationError(self._token.pin_attempts)

    def exchange(self, slot: Slot, peer_public_key: ec.EllipticCurvePublicKey) -> bytes:
        self._token.exchanges += 1
        return self._token.private_key.exchange(ec.ECDH(), peer_public_key)

    def decrypt(self, slot: Slot, ciphertext: bytes) -> bytes:
        self._token.decrypts += 1
        return self._token.private_key.decrypt(ciphertext, padding.PKCS1v15())

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._backend.open_count -= 1


class FakeBackend:
    """
    In-memory TokenBackend.

    Records how many sessions are open at once and which PINs were
    passed to open().
    """

    def __init__(self, *tokens: FakeToken) -> None:
        self.tokens = list(tokens)
        self.open_count = 0
        self.max_open = 0
        self.opened: list[str] = []
        self.pins: list[Optional[str]] = []
        self.sessions: list[FakeSession] = []

    def list_readers(self) -> list[str]:
        return [token.reader for token in self.tokens]

    def open(self, reader: str, pin: Optional[str] = None, verbose: bool = False) -> FakeSession:
        token = next(t for t in self.tokens if t.reader == reader)
        self.opened.append(reader)
        self.pins.append(pin)
        if token.fail_open:
            raise DeviceError(f"Unable to connect to {reader}")

        session = FakeSession(self, token, pin)
        self.sessions.append(session)
        self.open_count += 1
        self.max_open = max(self.max_open, self.open_count)
        return session


@pytest.fixture(scope="session")
def p256_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def p384_key():
    return ec.generate_private_key(ec.SECP384R1())


@pytest.fixture(scope="session")
def p521_key():
    return ec.generate_private_key(ec.SECP521R1())


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_p256_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def two_tokens(p256_key, rsa_key):
    """Two provisioned tokens: serial 1001 (EC) and 2002 (RSA)."""
    return FakeToken(1001, p256_key), FakeToken(2002, rsa_key)


@pytest.fixture
def backend(two_tokens):
    return FakeBackend(*two_tokens)
