"""Exception types raised by the kiosk order engine."""

from __future__ import annotations


class KioskError(Exception):
    """Base class for kiosk engine errors."""


class ValidationError(KioskError):
    """User input rejected before any network call is made."""


class PersistenceError(KioskError):
    """The durable local store could not be read or written."""


class PaymentStateError(KioskError):
    """A payment action was requested from a step that does not allow it."""
