"""
Booking state machine coordinating the slot store and the value-transfer system.

States::

    Requested -> EligibilityChecked -> TransferSubmitted -> TransferConfirmed
              -> Persisted -> Completed

with ``Failed{reason}`` reachable from every non-terminal state. Each
transition is written through the persistence port so an interrupted
attempt can be inspected and reconciled. Persistence calls run in worker
threads so one reservation's writes never block the others on the loop.

Only idempotent reads (the eligibility check and the confirmation wait) are
retried. Submissions are never retried automatically: an ambiguous failure
could mean the buyer has already paid.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

import pendulum

from ..domain.exceptions import (
    AlreadyBookedError,
    ConfirmationTimeoutError,
    InsufficientFundsError,
    SlotExpiredError,
    SlotBookingError,
    SlotNotFoundError,
    TransferError,
    TransferUnavailableError,
)
from ..domain.models import (
    TRANSFER_RECEIPT,
    AvailabilitySettings,
    BookingAttempt,
    BookingIntent,
    BookingRecord,
    BookingState,
    FailureReason,
    PendingTransfer,
    ReceiptEvent,
    Slot,
    TransferReference,
)
from .ports import PersistenceProtocol, ValueTransferProtocol
from .slot_store import Clock, SlotStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class OrchestratorSettings:
    """Timeouts and retry limits for the booking protocol."""
    confirmation_timeout_seconds: float = 120.0
    eligibility_retries: int = 3
    confirmation_retries: int = 3
    retry_delay_seconds: float = 1.0


def extract_receipt(events: Iterable[ReceiptEvent], reference: TransferReference) -> Optional[ReceiptEvent]:
    """
    Pick the transfer receipt belonging to ``reference``.

    A confirmation may carry unrelated events (other buyers, approvals,
    token bookkeeping); only a transfer event matching the slot+buyer+price
    triple is accepted.
    """
    for event in events:
        if event.kind == TRANSFER_RECEIPT and reference.matches(event):
            return event
    return None


class BookingOrchestrator:
    """
    Drives one reservation at a time through the booking state machine.

    Many reservations may run concurrently on the same event loop; the only
    shared mutable step is ``SlotStore.mark_booked``, which is atomic per slot.
    """

    def __init__(
        self,
        slot_store: SlotStore,
        repository: PersistenceProtocol,
        transfer_client: ValueTransferProtocol,
        settings: Optional[OrchestratorSettings] = None,
        clock: Clock = pendulum.now,
    ) -> None:
        self._slot_store = slot_store
        self._repository = repository
        self._transfers = transfer_client
        self._settings = settings or OrchestratorSettings()
        self._clock = clock

    async def reserve(self, intent: BookingIntent) -> BookingAttempt:
        """
        Run a reservation to a terminal state.

        Never raises for booking outcomes: validation, concurrency and
        external failures are returned as a FAILED attempt with a reason.

        Args:
            intent: Slot, buyer and contact details

        Returns:
            The attempt, either COMPLETED with a BookingRecord or FAILED
        """
        attempt = BookingAttempt(attempt_id=uuid.uuid4().hex, intent=intent)
        await self._save(attempt)

        # Requested: make sure the slot is still worth paying for
        try:
            slot = await asyncio.to_thread(self._slot_store.get, intent.slot_id)
        except SlotNotFoundError as exc:
            return await self._fail(attempt, FailureReason.SLOT_NOT_FOUND, str(exc))

        attempt.provider_id = slot.provider_id
        if slot.booked:
            return await self._fail(attempt, FailureReason.ALREADY_BOOKED, f"Slot {slot.id} is already booked")
        if slot.ends_at() <= self._clock():
            return await self._fail(attempt, FailureReason.SLOT_EXPIRED, f"Slot {slot.id} has already ended")

        attempt.price_quoted = await asyncio.to_thread(self._quote, slot)
        reference = attempt.reference
        buyer = intent.buyer_identity

        # Requested -> EligibilityChecked
        try:
            eligible = await self._retry(
                "eligibility check",
                lambda: self._transfers.check_eligibility(buyer, reference.amount),
                self._settings.eligibility_retries,
            )
        except TransferError as exc:
            return await self._fail(attempt, FailureReason.TRANSFER_FAILED, f"Eligibility check failed: {exc}")

        if not eligible:
            return await self._fail(
                attempt, FailureReason.INSUFFICIENT_FUNDS,
                f"Balance does not cover {reference.amount}",
            )
        await self._advance(attempt, BookingState.ELIGIBILITY_CHECKED)

        # EligibilityChecked -> TransferSubmitted
        try:
            approval = await self._transfers.authorize(buyer, reference.amount, reference)
            await self._await_confirmation(approval)
            pending = await self._transfers.submit_transfer(
                buyer, slot.provider_id, reference.amount, reference,
            )
        except InsufficientFundsError as exc:
            return await self._fail(attempt, FailureReason.INSUFFICIENT_FUNDS, str(exc))
        except TransferError as exc:
            logger.warning(
                "Transfer submission failed for attempt %s (buyer=%s slot=%s amount=%s): %s",
                attempt.attempt_id, buyer, slot.id, reference.amount, exc,
            )
            return await self._fail(attempt, FailureReason.TRANSFER_FAILED, str(exc))
        await self._advance(attempt, BookingState.TRANSFER_SUBMITTED)

        # TransferSubmitted -> TransferConfirmed
        try:
            events = await self._await_confirmation(pending)
        except TransferError as exc:
            return await self._fail(attempt, FailureReason.CONFIRMATION_TIMEOUT, str(exc))

        receipt = extract_receipt(events, reference)
        if receipt is None:
            return await self._fail(
                attempt, FailureReason.RECEIPT_NOT_FOUND,
                f"No receipt among {len(events)} confirmation event(s) for {reference.as_string()}",
            )
        attempt.receipt_id = receipt.receipt_id
        await self._advance(attempt, BookingState.TRANSFER_CONFIRMED)

        # TransferConfirmed -> Persisted
        booking_id = uuid.uuid4().hex
        try:
            await asyncio.to_thread(self._slot_store.mark_booked, slot.id, booking_id)
        except AlreadyBookedError as exc:
            return await self._fail(attempt, FailureReason.SLOT_RACE_LOST, str(exc))
        except SlotExpiredError as exc:
            return await self._fail(attempt, FailureReason.SLOT_EXPIRED, str(exc))
        except SlotNotFoundError as exc:
            return await self._fail(attempt, FailureReason.SLOT_NOT_FOUND, str(exc))
        attempt.booking_id = booking_id
        await self._advance(attempt, BookingState.PERSISTED)

        # Persisted -> Completed
        record = BookingRecord(
            booking_id=booking_id,
            slot_id=slot.id,
            provider_id=slot.provider_id,
            buyer_identity=buyer,
            price_quoted=reference.amount,
            transfer_receipt_id=receipt.receipt_id,
            created_at=self._clock(),
            contact_info=intent.contact_info,
        )
        try:
            await asyncio.to_thread(self._repository.save_booking_record, record)
        except (OSError, ValueError) as exc:
            return await self._release_unrecorded(attempt, slot, booking_id, exc)
        attempt.record = record
        await self._advance(attempt, BookingState.COMPLETED)

        logger.info(
            "Booked slot %s for %s (booking=%s receipt=%s amount=%s)",
            slot.id, buyer, booking_id, receipt.receipt_id, reference.amount,
        )
        return attempt

    async def reserve_all(self, intents: Iterable[BookingIntent]) -> List[BookingAttempt]:
        """Run independent reservations concurrently."""
        return list(await asyncio.gather(*(self.reserve(intent) for intent in intents)))

    def pending_reconciliation(self) -> List[BookingAttempt]:
        """Failed attempts where value may have moved and a person must follow up."""
        return [
            attempt for attempt in self._repository.load_attempts()
            if attempt.state is BookingState.FAILED
            and (attempt.refund_due or attempt.failure_reason.requires_reconciliation)
        ]

    def reconcile(self, events: Iterable[ReceiptEvent]) -> List[BookingAttempt]:
        """
        Match late-arriving receipts against timed-out attempts.

        A timed-out attempt whose slot+buyer+price triple matches a late
        transfer receipt gets the receipt attached and is flagged
        ``refund_due``. The booking is never completed automatically: the
        slot may have been sold to someone else in the meantime.

        Returns:
            The attempts that were matched
        """
        events = list(events)
        matched: List[BookingAttempt] = []

        for attempt in self._repository.load_attempts():
            if attempt.failure_reason is not FailureReason.CONFIRMATION_TIMEOUT or attempt.receipt_id:
                continue
            reference = attempt.reference
            receipt = extract_receipt(events, reference) if reference else None
            if receipt is None:
                continue

            attempt.receipt_id = receipt.receipt_id
            attempt.refund_due = True
            attempt.failure_detail = f"{attempt.failure_detail} Late receipt {receipt.receipt_id} arrived.".strip()
            events.remove(receipt)
            self._repository.save_attempt(attempt)
            self._log_reconciliation(attempt, "Late confirmation matched a timed-out booking")
            matched.append(attempt)

        return matched

    # ── Internals ────────────────────────────────────────────────────────

    def _quote(self, slot: Slot) -> Decimal:
        saved = self._repository.load_pattern(slot.provider_id)
        settings = saved.settings if saved else AvailabilitySettings(provider_id=slot.provider_id)
        return settings.quote(slot)

    async def _await_confirmation(self, pending: PendingTransfer) -> List[ReceiptEvent]:
        """
        Wait for a transfer leg to become final within the configured timeout.

        Transient errors are retried until the deadline or the retry limit.

        Raises:
            ConfirmationTimeoutError: If the deadline passes first
            TransferError: If the system keeps failing
        """
        timeout = self._settings.confirmation_timeout_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        async def poll() -> List[ReceiptEvent]:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            return await asyncio.wait_for(
                self._transfers.await_confirmation(pending, remaining), remaining,
            )

        try:
            return await self._retry(
                f"confirmation of {pending.leg} {pending.handle}",
                poll,
                self._settings.confirmation_retries,
            )
        except asyncio.TimeoutError as exc:
            raise ConfirmationTimeoutError(
                f"{pending.leg} {pending.handle} was not confirmed within {timeout:g}s"
            ) from exc

    async def _retry(
        self,
        description: str,
        call: Callable[[], Awaitable[T]],
        retries: int,
    ) -> T:
        for attempt_number in range(retries + 1):
            try:
                return await call()
            except TransferUnavailableError as exc:
                if attempt_number == retries:
                    raise
                logger.debug(
                    "Retrying %s after transient error (%d/%d): %s",
                    description, attempt_number + 1, retries, exc,
                )
                await asyncio.sleep(self._settings.retry_delay_seconds)
        raise AssertionError("unreachable")

    async def _advance(self, attempt: BookingAttempt, state: BookingState) -> None:
        attempt.advance(state)
        logger.debug("Attempt %s -> %s", attempt.attempt_id, state.value)
        await self._save(attempt)

    async def _fail(self, attempt: BookingAttempt, reason: FailureReason, detail: str) -> BookingAttempt:
        attempt.fail(reason, detail)
        # Any failure after a confirmed receipt means the buyer has paid
        attempt.refund_due = attempt.receipt_id is not None
        await self._save(attempt)

        if reason.requires_reconciliation or attempt.refund_due:
            self._log_reconciliation(attempt, f"Booking failed with {reason.value}")
        else:
            logger.warning(
                "Booking attempt %s for slot %s failed: %s (%s)",
                attempt.attempt_id, attempt.intent.slot_id, reason.value, detail,
            )
        return attempt

    async def _release_unrecorded(
        self,
        attempt: BookingAttempt,
        slot: Slot,
        booking_id: str,
        error: Exception,
    ) -> BookingAttempt:
        """
        Undo ``mark_booked`` when the BookingRecord could not be written.

        The buyer has paid, so the attempt fails with a refund due and the
        slot goes back on sale. If the slot cannot be released it stays
        booked and the reconciliation log says so.
        """
        detail = f"Booking record {booking_id} not saved: {error}"
        try:
            await asyncio.to_thread(self._slot_store.mark_unbooked, slot.id, booking_id)
        except (SlotBookingError, OSError) as exc:
            detail = f"{detail}. Slot {slot.id} is still held by {booking_id}: {exc}"
        else:
            attempt.booking_id = None
        return await self._fail(attempt, FailureReason.RECORD_NOT_SAVED, detail)

    async def _save(self, attempt: BookingAttempt) -> None:
        await asyncio.to_thread(self._repository.save_attempt, attempt)

    @staticmethod
    def _log_reconciliation(attempt: BookingAttempt, message: str) -> None:
        logger.error(
            "%s; needs reconciliation: attempt=%s buyer=%s slot=%s amount=%s receipt=%s detail=%s",
            message,
            attempt.attempt_id,
            attempt.intent.buyer_identity,
            attempt.intent.slot_id,
            attempt.price_quoted,
            attempt.receipt_id or "none",
            attempt.failure_detail,
        )
