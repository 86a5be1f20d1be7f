"""
Domain-specific exception hierarchy for the slot booking application.
"""

from enum import Enum


class SlotBookingError(Exception):
    """Base class for all application-level errors."""


class ConfigurationError(SlotBookingError):
    """Raised when the application is wired without a required collaborator."""


# Input validation: rejected synchronously, never reaches persistence.

class ValidationError(SlotBookingError, ValueError):
    """Raised when availability input is malformed."""


class InvalidRangeError(ValidationError):
    """Raised when a time or date range does not start before (or on) its end."""


class InvalidIntervalError(ValidationError):
    """Raised when a slot length is not a positive number of minutes."""


# Concurrency: expected, routine, shown as "slot no longer available".

class SlotNotFoundError(SlotBookingError, LookupError):
    """Raised when a slot identity is unknown to the store."""

    def __init__(self, slot_id: str):
        super().__init__(f"Slot {slot_id} does not exist")
        self.slot_id = slot_id


class SlotUnavailableError(SlotBookingError):
    """Base class for slots that can no longer be booked or changed."""

    def __init__(self, slot_id: str, message: str):
        super().__init__(message)
        self.slot_id = slot_id


class AlreadyBookedError(SlotUnavailableError):
    """Raised when a slot has already been reserved by another buyer."""

    def __init__(self, slot_id: str):
        super().__init__(slot_id, f"Slot {slot_id} is already booked")


class SlotExpiredError(SlotUnavailableError):
    """Raised when a slot has already ended."""

    def __init__(self, slot_id: str):
        super().__init__(slot_id, f"Slot {slot_id} has already ended")


class SlotLockedError(SlotUnavailableError):
    """Raised when regeneration would remove or retime a booked slot."""

    def __init__(self, slot_id: str, detail: str = "it is booked"):
        super().__init__(slot_id, f"Slot {slot_id} cannot be changed: {detail}")


# External value-transfer system.

class TransferError(SlotBookingError):
    """Base class for failures reported by the value-transfer system."""


class TransferUnavailableError(TransferError):
    """Transient failure talking to the value-transfer system."""


class InsufficientFundsError(TransferError):
    """Raised when the buyer cannot cover the quoted price."""


class TransferSubmissionError(TransferError):
    """Raised when a transfer leg is rejected or its outcome is ambiguous."""


class ConfirmationTimeoutError(TransferError):
    """Raised when a submitted transfer is not confirmed within the timeout."""


# Access verification.

class DenialReason(str, Enum):
    """Why a holder was refused access to a booked session."""

    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    HOLDER_MISMATCH = "holder_mismatch"
    NOT_YET_ACTIVE = "not_yet_active"

    @property
    def user_message(self) -> str:
        return _DENIAL_MESSAGES[self]


_DENIAL_MESSAGES = {
    DenialReason.NOT_FOUND: "We could not find a booking with that reference.",
    DenialReason.EXPIRED: "This session has already ended.",
    DenialReason.HOLDER_MISMATCH: "This booking belongs to a different account.",
    DenialReason.NOT_YET_ACTIVE: "This session has not started yet. Please come back closer to the start time.",
}


class AccessDeniedError(SlotBookingError):
    """Raised when a holder may not join a booked session."""

    def __init__(self, reason: DenialReason, booking_id: str):
        super().__init__(reason.user_message)
        self.reason = reason
        self.booking_id = booking_id
