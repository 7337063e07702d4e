"""
PIV Device Selection
====================

Chooses exactly one attached token for an operation, or lists all of them.

Selection Rules:
1. Enumerate readers; none at all = NoDevicesError
2. For each reader, in order: open, read serial + version, read the slot
3. An unprovisioned slot or any read error makes only that candidate unusable
4. required_serial > 0: exact match only; otherwise first non-excluded serial
5. Nothing accepted = DeviceSelectionError

Resource Rules:
- At most one session is open during a scan
- Rejected or failed candidates are closed before the next reader is tried
- The selected session is closed when the `select` context exits, on every path
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from pivseal.core.device.criteria import SelectionCriteria
from pivseal.core.device.token import (
    CandidateError,
    DeviceDescriptor,
    Inventory,
    Slot,
    SlotDecrypter,
    TokenBackend,
    TokenSession,
)
from pivseal.core.errors import DeviceSelectionError, NoDevicesError


@dataclass(frozen=True, slots=True)
class SelectedDevice:
    """An open, vetted token session together with what was read from it."""

    descriptor: DeviceDescriptor
    session: TokenSession

    @property
    def serial(self) -> int:
        return self.descriptor.serial

    def login(self, pin: Optional[str] = None) -> None:
        """Verify the PIN given here or at open time. Raises AuthenticationError on rejection."""
        self.session.login(pin)

    def decrypter(self) -> SlotDecrypter:
        """Private-key operations of the selected slot."""
        if self.descriptor.slot is None or self.descriptor.public_key is None:
            raise DeviceSelectionError("No slot was read from the selected device")
        return SlotDecrypter(self.session, self.descriptor.slot, self.descriptor.public_key)


class DeviceSelector:
    """
    Vets attached PIV tokens against selection criteria.

    Usage:
        selector = DeviceSelector(YubiKeyBackend(), logger)

        with selector.select(criteria, Slot.KEY_MANAGEMENT) as device:
            public_key = device.descriptor.public_key
        # session is closed here

        inventory = selector.inventory(criteria)
    """

    __slots__ = ("_backend", "_logger")

    def __init__(self, backend: TokenBackend, logger: Optional[logging.Logger] = None) -> None:
        self._backend = backend
        self._logger = logger or logging.getLogger(__name__)

    def _try_candidate(
        self,
        descriptor: DeviceDescriptor,
        pin: Optional[str],
        verbose: bool,
    ) -> TokenSession:
        """
        Open a reader and fill the descriptor.

        The session is closed before any error propagates.
        """
        session = self._backend.open(descriptor.reader, pin=pin, verbose=verbose)
        try:
            descriptor.serial = session.serial()
            descriptor.version = session.version()

            if descriptor.slot is not None:
                contents = session.read_slot(descriptor.slot)
                descriptor.public_key = contents.public_key
                descriptor.certificate = contents.certificate
        except BaseException:
            session.close()
            raise

        return session

    @contextmanager
    def select(
        self,
        criteria: SelectionCriteria,
        slot: Optional[Slot] = Slot.KEY_MANAGEMENT,
        authenticate: bool = False,
    ) -> Iterator[SelectedDevice]:
        """
        Select one token and hold its session for the duration of the block.

        Args:
            criteria: Serial/exclusion rules
            slot: Slot that must be provisioned, or None to skip the check
            authenticate: Pass the PIN when opening sessions

        Raises:
            NoDevicesError: If no readers are attached
            DeviceSelectionError: If no token satisfies the criteria
        """
        readers = list(self._backend.list_readers())
        if not readers:
            raise NoDevicesError()

        pin = criteria.pin if authenticate else None
        selected: Optional[SelectedDevice] = None

        # Scan devices for a matching serial number
        for reader in readers:
            descriptor = DeviceDescriptor(reader=reader, slot=slot)
            try:
                session = self._try_candidate(descriptor, pin, criteria.verbose)
            except Exception as e:
                self._logger.warning(
                    "Unable to use PIV device reader=%s serial=%s: %s",
                    reader, descriptor.serial or "-", e,
                )
                continue

            if criteria.accepts(descriptor.serial):
                mode = "specified serial" if criteria.required_serial else "auto-selected"
                self._logger.info(
                    "Using PIV device (%s) serial=%d version=%s authenticate=%s",
                    mode, descriptor.serial, descriptor.version, pin is not None,
                )
                selected = SelectedDevice(descriptor=descriptor, session=session)
                break

            # Close unused token handles
            session.close()

        if selected is None:
            raise DeviceSelectionError(
                "Unable to use any of the attached PIV devices. Please ensure that a "
                "device with the given serial number is attached or provision the "
                f"{slot.name if slot else 'required'} slot of at least one attached "
                "device to auto-select"
            )

        try:
            yield selected
        finally:
            selected.session.close()

    def inventory(
        self,
        criteria: SelectionCriteria,
        slot: Optional[Slot] = Slot.KEY_MANAGEMENT,
    ) -> Inventory:
        """
        List all tokens and mark the one `select` would choose.

        Never authenticates and never stops on a single device's error;
        failures are collected in the returned inventory.
        """
        result = Inventory()

        for reader in self._backend.list_readers():
            descriptor = DeviceDescriptor(reader=reader, slot=slot)
            try:
                session = self._try_candidate(descriptor, None, criteria.verbose)
            except Exception as e:
                result.errors.append(
                    CandidateError(reader=reader, message=str(e), serial=descriptor.serial or None)
                )
                continue

            session.close()

            # Auto-selection marks only the first acceptable device
            if criteria.accepts(descriptor.serial) and (criteria.required_serial or not result.selected):
                descriptor.selected = True
                result.selected = True

            result.devices.append(descriptor)

        return result
