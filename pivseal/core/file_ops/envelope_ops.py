"""
Device Envelope Operations
==========================

Seal a payload to an attached PIV device, open it again, or move it to
another device.

Flows:
    encrypt_to_device:   select (criteria) → slot public key → seal
    decrypt_from_device: parse → select (envelope serial) → key check
                         → PIN login → recover secret → open
    reencrypt:           decrypt_from_device → encrypt_to_device with the
                         source serial excluded

WARNING:
    - The plaintext only ever lives in memory
    - The key check runs before the PIN is presented to the device
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pivseal.core.crypto.engine import EnvelopeEngine
from pivseal.core.crypto.envelope import Envelope
from pivseal.core.device.criteria import SelectionCriteria
from pivseal.core.device.selector import DeviceSelector
from pivseal.core.device.token import Slot


def encrypt_to_device(
    payload: Any,
    selector: DeviceSelector,
    criteria: SelectionCriteria,
    engine: Optional[EnvelopeEngine] = None,
    slot: Slot = Slot.KEY_MANAGEMENT,
    logger: Optional[logging.Logger] = None,
) -> Envelope:
    """
    Seal a JSON-serializable payload to the device chosen by criteria.

    No PIN is needed: only the slot's public key is used.

    Raises:
        NoDevicesError: If no devices are attached
        DeviceSelectionError: If no device satisfies the criteria
        UnsupportedKeyError: If the slot key cannot be used for envelopes
    """
    logger = logger or logging.getLogger(__name__)
    engine = engine or EnvelopeEngine(logger)

    with selector.select(criteria.without_pin(), slot) as device:
        logger.info("Encrypting to PIV device serial=%d slot=%s", device.serial, slot.label)
        return engine.seal(payload, device.descriptor.public_key, device=device.serial)


def decrypt_from_device(
    data: str | bytes | Envelope,
    selector: DeviceSelector,
    criteria: SelectionCriteria,
    engine: Optional[EnvelopeEngine] = None,
    slot: Slot = Slot.KEY_MANAGEMENT,
    logger: Optional[logging.Logger] = None,
) -> tuple[Any, Envelope]:
    """
    Open an envelope with the device whose serial it names.

    The envelope's device serial replaces any serial in criteria.

    Returns:
        (payload, envelope) so callers can learn the source device

    Raises:
        MalformedEnvelopeError: If the envelope cannot be parsed
        DeviceSelectionError: If the named device is not attached
        KeyMismatchError: If the device key did not seal the envelope
        AuthenticationError: If the PIN is rejected
        DecryptionError: If authentication of the ciphertext fails
    """
    logger = logger or logging.getLogger(__name__)
    engine = engine or EnvelopeEngine(logger)
    envelope = data if isinstance(data, Envelope) else Envelope.from_json(data)

    with selector.select(criteria.for_serial(envelope.device), slot, authenticate=True) as device:
        engine.check_key(envelope, device.descriptor.public_key)
        device.login(criteria.pin)
        payload = engine.open(envelope, device.decrypter())

    return payload, envelope


def reencrypt(
    data: str | bytes | Envelope,
    selector: DeviceSelector,
    criteria: SelectionCriteria,
    engine: Optional[EnvelopeEngine] = None,
    slot: Slot = Slot.KEY_MANAGEMENT,
    logger: Optional[logging.Logger] = None,
) -> Envelope:
    """
    Decrypt an envelope and seal its payload to a different device.

    The source device serial is added to the exclusions, so
    auto-selection never picks it again. An explicit serial in criteria
    still wins.
    """
    logger = logger or logging.getLogger(__name__)
    engine = engine or EnvelopeEngine(logger)

    payload, source = decrypt_from_device(data, selector, criteria, engine, slot, logger)
    logger.info("Re-encrypting payload from PIV device serial=%d", source.device)

    target = criteria.excluding(source.device).without_pin()
    return encrypt_to_device(payload, selector, target, engine, slot, logger)
