"""
Device Selection Criteria
=========================

Immutable description of which PIV token an operation may use.

Rules:
- required_serial > 0: only that exact serial, exclude set ignored
- required_serial == 0: first token whose serial is not excluded
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Final, Iterable, Optional

ANY_SERIAL: Final[int] = 0


@dataclass(frozen=True, slots=True)
class SelectionCriteria:
    """
    Selection criteria, built once per invocation.

    Attributes:
        required_serial: Serial to require, or 0 for any
        exclude_serials: Serials never auto-selected
        pin: PIN for authenticated sessions (never shown in repr)
        verbose: Ask the backend for verbose diagnostics
    """
    required_serial: int = ANY_SERIAL
    exclude_serials: frozenset[int] = field(default_factory=frozenset)
    pin: Optional[str] = field(default=None, repr=False)
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.required_serial < 0:
            raise ValueError("required_serial must not be negative")
        if not isinstance(self.exclude_serials, frozenset):
            object.__setattr__(self, "exclude_serials", frozenset(self.exclude_serials))

    @classmethod
    def create(
        cls,
        serial: int = ANY_SERIAL,
        avoid: Iterable[int] = (),
        pin: Optional[str] = None,
        verbose: bool = False,
    ) -> SelectionCriteria:
        """Build criteria from user input."""
        return cls(
            required_serial=serial,
            exclude_serials=frozenset(int(s) for s in avoid),
            pin=pin or None,
            verbose=verbose,
        )

    def excludes(self, serial: int) -> bool:
        """Check if the given serial is configured to be avoided."""
        return serial in self.exclude_serials

    def accepts(self, serial: int) -> bool:
        """Decide whether a token with this serial satisfies the criteria."""
        if self.required_serial > ANY_SERIAL:
            return serial == self.required_serial
        return not self.excludes(serial)

    def excluding(self, *serials: int) -> SelectionCriteria:
        """Copy with additional serials excluded."""
        return replace(self, exclude_serials=self.exclude_serials | frozenset(serials))

    def for_serial(self, serial: int) -> SelectionCriteria:
        """Copy requiring a specific serial."""
        return replace(self, required_serial=serial)

    def with_pin(self, pin: Optional[str]) -> SelectionCriteria:
        """Copy carrying the PIN for authenticated selection; empty means none."""
        return replace(self, pin=pin or None)

    def without_pin(self) -> SelectionCriteria:
        return replace(self, pin=None)
