"""
PivSeal Device Module
=====================

Selection of one PIV token among those attached, and the token contract
the envelope protocol relies on.

Security Features:
- Exact serial match or auto-selection with an exclude list
- Hard failure when no device qualifies
- Every session is closed on every path
- PIN only presented to the selected device

Components:
- token.py: Token/session contract and enumeration records
- criteria.py: Immutable selection criteria
- selector.py: Selection and inventory
- yubikey.py: yubikey-manager backend (imported on demand)
"""

from pivseal.core.device.criteria import ANY_SERIAL, SelectionCriteria
from pivseal.core.device.selector import DeviceSelector, SelectedDevice
from pivseal.core.device.token import (
    CandidateError,
    DeviceDescriptor,
    Inventory,
    Slot,
    SlotContents,
    SlotDecrypter,
    TokenBackend,
    TokenSession,
)

__all__ = [
    "ANY_SERIAL",
    "SelectionCriteria",
    "DeviceSelector",
    "SelectedDevice",
    "CandidateError",
    "DeviceDescriptor",
    "Inventory",
    "Slot",
    "SlotContents",
    "SlotDecrypter",
    "TokenBackend",
    "TokenSession",
]
