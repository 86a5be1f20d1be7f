"""
Access verification for booked sessions.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Optional

import pendulum
from pendulum import DateTime

from ..domain.exceptions import AccessDeniedError, DenialReason, SlotNotFoundError
from ..domain.models import BookingRecord, JoinCapability
from .ports import PersistenceProtocol
from .slot_store import Clock, SlotStore

logger = logging.getLogger(__name__)


class AccessVerifier:
    """
    Confirms a holder may join the session behind a booking right now.

    Checks run in order: the booking exists and still holds its slot, the
    slot has not ended (with a grace window), the requester holds the
    booking, and the slot has started (with the same grace window).
    Each failure has its own reason.
    """

    def __init__(
        self,
        repository: PersistenceProtocol,
        slot_store: SlotStore,
        signing_secret: str,
        join_base_url: str,
        grace_minutes: int = 10,
        clock: Clock = pendulum.now,
    ):
        if not signing_secret:
            raise ValueError("signing_secret must not be empty")
        self._repository = repository
        self._slot_store = slot_store
        self._secret = signing_secret.encode("utf-8")
        self._join_base_url = join_base_url.rstrip("/")
        self._grace_minutes = grace_minutes
        self._clock = clock

    def verify(self, holder_identity: str, booking_id: str, now: Optional[DateTime] = None) -> JoinCapability:
        """
        Issue a join capability valid until the end of the booked slot.

        Args:
            holder_identity: Identity presented by the requester
            booking_id: Booking the requester wants to join
            now: Override for the current instant

        Returns:
            JoinCapability with a signed join link

        Raises:
            AccessDeniedError: With reason NOT_FOUND, EXPIRED,
                HOLDER_MISMATCH or NOT_YET_ACTIVE
        """
        now = now or self._clock()
        record = self._repository.get_booking_record(booking_id)
        if record is None:
            raise self._deny(DenialReason.NOT_FOUND, booking_id, holder_identity)

        try:
            slot = self._slot_store.get(record.slot_id)
        except SlotNotFoundError:
            raise self._deny(DenialReason.NOT_FOUND, booking_id, holder_identity) from None
        if slot.booking_id != record.booking_id:
            # Released and possibly resold since this booking was made
            raise self._deny(DenialReason.NOT_FOUND, booking_id, holder_identity)

        grace = pendulum.duration(minutes=self._grace_minutes)
        if now > slot.ends_at() + grace:
            raise self._deny(DenialReason.EXPIRED, booking_id, holder_identity)

        if not self._same_holder(record, holder_identity):
            raise self._deny(DenialReason.HOLDER_MISMATCH, booking_id, holder_identity)

        if now < slot.starts_at() - grace:
            raise self._deny(DenialReason.NOT_YET_ACTIVE, booking_id, holder_identity)

        expires_at = slot.ends_at()
        token = self._sign(booking_id, record.buyer_identity, expires_at)
        capability = JoinCapability(
            booking_id=booking_id,
            holder_identity=record.buyer_identity,
            url=f"{self._join_base_url}/{booking_id}?token={token}",
            token=token,
            expires_at=expires_at,
        )
        logger.info("Issued join link for booking %s to %s until %s", booking_id, holder_identity, expires_at)
        return capability

    def check_token(
        self,
        booking_id: str,
        holder_identity: str,
        token: str,
        now: Optional[DateTime] = None,
    ) -> bool:
        """True if ``token`` was issued for this booking and holder and has not expired."""
        record = self._repository.get_booking_record(booking_id)
        if record is None or not self._same_holder(record, holder_identity):
            return False
        try:
            slot = self._slot_store.get(record.slot_id)
        except SlotNotFoundError:
            return False
        if slot.booking_id != record.booking_id:
            return False

        expires_at = slot.ends_at()
        if (now or self._clock()) > expires_at:
            return False
        expected = self._sign(booking_id, record.buyer_identity, expires_at)
        return hmac.compare_digest(expected, token)

    def _sign(self, booking_id: str, holder_identity: str, expires_at: DateTime) -> str:
        message = f"{booking_id}|{holder_identity.lower()}|{int(expires_at.timestamp())}"
        return hmac.new(self._secret, message.encode("utf-8"), hashlib.sha256).hexdigest()

    @staticmethod
    def _same_holder(record: BookingRecord, holder_identity: str) -> bool:
        return record.buyer_identity.strip().lower() == holder_identity.strip().lower()

    @staticmethod
    def _deny(reason: DenialReason, booking_id: str, holder_identity: str) -> AccessDeniedError:
        logger.info("Denied access to booking %s for %s: %s", booking_id, holder_identity, reason.value)
        return AccessDeniedError(reason, booking_id)
