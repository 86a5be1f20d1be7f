"""
Mock value-transfer system for running bookings without a payment backend.
"""

import asyncio
import itertools
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Tuple

from ..domain.exceptions import InsufficientFundsError, TransferUnavailableError
from ..domain.models import (
    APPROVAL_RECEIPT,
    TRANSFER_RECEIPT,
    PendingTransfer,
    ReceiptEvent,
    TransferReference,
)

AUTHORIZATION_LEG = "authorization"
TRANSFER_LEG = "transfer"


class MockTransferClient:
    """
    Simulates an escrow-style payment system.

    Balances are kept in memory. Every confirmation can carry unrelated
    events next to the real receipt, the way a block's event log does, so
    receipt matching is exercised. Switches allow stalling confirmations,
    dropping receipts and injecting transient eligibility failures.
    """

    def __init__(
        self,
        balances: Optional[Mapping[str, object]] = None,
        latency: float = 0.0,
        noise_events: bool = True,
        stall_confirmations: bool = False,
        drop_receipts: bool = False,
        transient_failures: int = 0,
    ):
        """
        Initialize the mock client.

        Args:
            balances: Starting balance per identity
            latency: Seconds each call sleeps (0 still yields to the event loop)
            noise_events: Add unrelated events to transfer confirmations
            stall_confirmations: Transfer legs never confirm on their own
            drop_receipts: Transfer confirmations omit the matching receipt
            transient_failures: Number of eligibility checks that fail transiently
        """
        self.balances: Dict[str, Decimal] = {
            identity.lower(): Decimal(str(amount))
            for identity, amount in (balances or {}).items()
        }
        self.latency = latency
        self.noise_events = noise_events
        self.stall_confirmations = stall_confirmations
        self.drop_receipts = drop_receipts
        self.transient_failures = transient_failures
        self.submissions: List[Tuple[str, TransferReference]] = []
        self._events: Dict[str, List[ReceiptEvent]] = {}
        self._counter = itertools.count(1)

    def balance_of(self, identity: str) -> Decimal:
        return self.balances.get(identity.lower(), Decimal("0"))

    async def check_eligibility(self, buyer_identity: str, amount: Decimal) -> bool:
        await asyncio.sleep(self.latency)
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise TransferUnavailableError("Mock transfer system temporarily unavailable")
        return self.balance_of(buyer_identity) >= Decimal(amount)

    async def authorize(
        self,
        buyer_identity: str,
        amount: Decimal,
        reference: TransferReference,
    ) -> PendingTransfer:
        await asyncio.sleep(self.latency)
        handle = self._next_id("auth")
        self.submissions.append((AUTHORIZATION_LEG, reference))
        self._events[handle] = [
            self._event(APPROVAL_RECEIPT, reference.slot_id, buyer_identity, amount),
        ]
        return PendingTransfer(handle=handle, leg=AUTHORIZATION_LEG, reference=reference)

    async def submit_transfer(
        self,
        buyer_identity: str,
        recipient: str,
        amount: Decimal,
        reference: TransferReference,
    ) -> PendingTransfer:
        await asyncio.sleep(self.latency)
        amount = Decimal(amount)
        if self.balance_of(buyer_identity) < amount:
            raise InsufficientFundsError(f"Transfer of {amount} rejected: insufficient balance")

        self.balances[buyer_identity.lower()] = self.balance_of(buyer_identity) - amount
        self.balances[recipient.lower()] = self.balance_of(recipient) + amount

        handle = self._next_id("xfer")
        self.submissions.append((TRANSFER_LEG, reference))

        events: List[ReceiptEvent] = []
        if self.noise_events:
            # Same slot, another buyer; and a token bookkeeping event for this buyer
            events.append(self._event(TRANSFER_RECEIPT, reference.slot_id, "0xunrelated", amount))
            events.append(self._event("token_minted", reference.slot_id, buyer_identity, amount))
        if not self.drop_receipts:
            events.append(self._event(TRANSFER_RECEIPT, reference.slot_id, buyer_identity, amount))
        self._events[handle] = events

        return PendingTransfer(handle=handle, leg=TRANSFER_LEG, reference=reference)

    async def await_confirmation(self, pending: PendingTransfer, timeout: float) -> List[ReceiptEvent]:
        await asyncio.sleep(self.latency)
        if self.stall_confirmations and pending.leg == TRANSFER_LEG:
            # Never set: the caller's timeout cancels this wait
            await asyncio.Event().wait()
        return list(self._events.get(pending.handle, []))

    def settle_late(self, handle: str) -> List[ReceiptEvent]:
        """Events a stalled transfer eventually emits, for reconciliation."""
        return list(self._events.get(handle, []))

    def transfer_handles(self) -> List[str]:
        return [handle for handle in self._events if handle.startswith("xfer")]

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._counter):06d}"

    def _event(self, kind: str, slot_id: str, buyer_identity: str, amount: Decimal) -> ReceiptEvent:
        return ReceiptEvent(
            receipt_id=self._next_id("rcpt"),
            kind=kind,
            slot_id=slot_id,
            buyer_identity=buyer_identity,
            amount=Decimal(amount),
        )
