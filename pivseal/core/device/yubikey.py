"""
YubiKey PIV Backend
===================

Implements the token contract on top of yubikey-manager (ykman/yubikit),
talking to YubiKeys over PC/SC.

Slot Reads:
    - Public key from slot metadata (firmware 5.3+)
    - Certificate from the slot's data object, when present
    - Neither available = slot not provisioned

Errors:
    - APDU and PC/SC transport failures surface as DeviceError
    - No management application = serial 0

WARNING:
    - Every session holds the card exclusively until closed
    - PIN retries are limited by the device; a wrong PIN is never retried here
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from cryptography.hazmat.primitives.asymmetric import ec, padding
from ykman.pcsc import list_devices
from yubikit.core import ApplicationNotAvailableError, NotSupportedError
from yubikit.core.smartcard import SW, ApduError, SmartCardConnection
from yubikit.management import ManagementSession
from yubikit.piv import SLOT, InvalidPinError, PivSession

from pivseal.core.device.token import Slot, SlotContents
from pivseal.core.errors import AuthenticationError, DeviceError, SlotNotProvisionedError


class YubiKeySession:
    """One open PC/SC connection with the PIV application selected."""

    __slots__ = ("_connection", "_piv", "_pin", "_serial", "_version", "_closed")

    def __init__(self, connection: SmartCardConnection, pin: Optional[str] = None) -> None:
        self._connection = connection
        self._pin = pin
        self._closed = False

        try:
            self._serial = ManagementSession(connection).read_device_info().serial or 0
        except (NotSupportedError, ApplicationNotAvailableError, ApduError):
            # Serial not readable over CCID on this device
            self._serial = 0
        self._piv = PivSession(connection)
        self._version = str(self._piv.version)

    def serial(self) -> int:
        return self._serial

    def version(self) -> str:
        return self._version

    def read_slot(self, slot: Slot) -> SlotContents:
        piv_slot = SLOT(slot.value)
        public_key = None

        try:
            public_key = self._piv.get_slot_metadata(piv_slot).public_key
        except NotSupportedError:
            pass
        except ApduError as e:
            if e.sw == SW.REFERENCE_DATA_NOT_FOUND:
                raise SlotNotProvisionedError(slot.name) from e
            raise DeviceError(f"Unable to read slot {slot.label}: {e}") from e
        except Exception as e:
            raise DeviceError(f"Unable to read slot {slot.label}: {e}") from e

        try:
            certificate = self._piv.get_certificate(piv_slot)
        except ApduError as e:
            if e.sw != SW.FILE_NOT_FOUND:
                raise DeviceError(f"Unable to read certificate in slot {slot.label}: {e}") from e
            certificate = None
        except Exception as e:
            raise DeviceError(f"Unable to read certificate in slot {slot.label}: {e}") from e

        if public_key is None:
            if certificate is None:
                raise SlotNotProvisionedError(slot.name)
            public_key = certificate.public_key()

        return SlotContents(public_key=public_key, certificate=certificate)

    def login(self, pin: Optional[str] = None) -> None:
        pin = pin or self._pin
        if not pin:
            raise AuthenticationError()
        try:
            self._piv.verify_pin(pin)
        except InvalidPinError as e:
            raise AuthenticationError(e.attempts_remaining) from None
        except Exception as e:
            raise DeviceError(f"PIN verification failed: {e}") from e

    def exchange(self, slot: Slot, peer_public_key: ec.EllipticCurvePublicKey) -> bytes:
        try:
            return self._piv.calculate_secret(SLOT(slot.value), peer_public_key)
        except Exception as e:
            raise DeviceError(f"Key agreement on slot {slot.label} failed: {e}") from e

    def decrypt(self, slot: Slot, ciphertext: bytes) -> bytes:
        try:
            return self._piv.decrypt(SLOT(slot.value), ciphertext, padding.PKCS1v15())
        except Exception as e:
            raise DeviceError(f"Decryption on slot {slot.label} failed: {e}") from e

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._connection.close()


class YubiKeyBackend:
    """Enumerates YubiKeys attached through PC/SC readers."""

    __slots__ = ("_logger",)

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(__name__)

    def list_readers(self) -> Sequence[str]:
        try:
            return [device.fingerprint for device in list_devices()]
        except Exception as e:
            raise DeviceError(f"Unable to list PC/SC readers: {e}") from e

    def open(self, reader: str, pin: Optional[str] = None, verbose: bool = False) -> YubiKeySession:
        """
        Open a PIV session on the named reader.

        The PIN, when given, is kept for a later login; it is not verified
        here so that candidates rejected by serial never consume PIN attempts.
        """
        if verbose:
            self._logger.info("Opening PIV device reader=%s", reader)

        try:
            matches = [device for device in list_devices(reader) if device.fingerprint == reader]
            if not matches:
                raise DeviceError(f"Reader not found: {reader}")
            connection = matches[0].open_connection(SmartCardConnection)
        except DeviceError:
            raise
        except Exception as e:
            raise DeviceError(f"Unable to connect to {reader}: {e}") from e

        try:
            return YubiKeySession(connection, pin)
        except Exception as e:
            connection.close()
            raise DeviceError(f"Unable to select PIV application on {reader}: {e}") from e
        except BaseException:
            connection.close()
            raise
