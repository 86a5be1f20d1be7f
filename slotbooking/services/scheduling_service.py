"""
Application service exposing scheduling and booking to the UI/API layer.

The service coordinates the expander, the slot store, the booking
orchestrator and the access verifier. It keeps the CLI (or any HTTP layer)
thin and lets tests swap the persistence and value-transfer collaborators
through the protocols in ``ports``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

import pendulum
from pendulum import DateTime

from ..config import AppConfig
from ..domain.availability_expander import AvailabilityExpander, resolve_window
from ..domain.date_range_set import DateRangeSet
from ..domain.models import (
    AvailabilitySettings,
    BookingAttempt,
    BookingIntent,
    JoinCapability,
    Slot,
)
from ..domain.weekly_pattern import WeeklyPattern
from .access_verifier import AccessVerifier
from .booking_orchestrator import BookingOrchestrator, OrchestratorSettings
from .ports import PersistenceProtocol, ValueTransferProtocol
from .slot_store import Clock, SlotStore, UpsertResult

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    """What a save did to the provider's calendar."""
    settings: AvailabilitySettings
    generated: int
    upsert: UpsertResult
    warnings: List[str] = field(default_factory=list)


class SchedulingService:
    """Facade over the scheduling and booking components."""

    def __init__(
        self,
        repository: PersistenceProtocol,
        slot_store: SlotStore,
        expander: AvailabilityExpander,
        orchestrator: BookingOrchestrator,
        verifier: AccessVerifier,
        horizon_days: int = 365,
        clock: Clock = pendulum.now,
    ) -> None:
        self._repository = repository
        self._slot_store = slot_store
        self._expander = expander
        self._orchestrator = orchestrator
        self._verifier = verifier
        self._horizon_days = horizon_days
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        repository: PersistenceProtocol,
        transfer_client: ValueTransferProtocol,
        clock: Clock = pendulum.now,
    ) -> "SchedulingService":
        """Wire all components from application configuration."""
        slot_store = SlotStore(repository, clock=clock)
        orchestrator = BookingOrchestrator(
            slot_store=slot_store,
            repository=repository,
            transfer_client=transfer_client,
            settings=OrchestratorSettings(
                confirmation_timeout_seconds=config.booking.confirmation_timeout_seconds,
                eligibility_retries=config.booking.eligibility_retries,
                confirmation_retries=config.booking.confirmation_retries,
                retry_delay_seconds=config.booking.retry_delay_seconds,
            ),
            clock=clock,
        )
        verifier = AccessVerifier(
            repository=repository,
            slot_store=slot_store,
            signing_secret=config.access.signing_secret,
            join_base_url=config.access.join_base_url,
            grace_minutes=config.access.grace_minutes,
            clock=clock,
        )
        return cls(
            repository=repository,
            slot_store=slot_store,
            expander=AvailabilityExpander(max_days=config.scheduling.max_days),
            orchestrator=orchestrator,
            verifier=verifier,
            horizon_days=config.scheduling.default_window_days,
            clock=clock,
        )

    @property
    def orchestrator(self) -> BookingOrchestrator:
        return self._orchestrator

    @property
    def slot_store(self) -> SlotStore:
        return self._slot_store

    def save_availability(
        self,
        provider_id: str,
        pattern: WeeklyPattern,
        exclusions: DateRangeSet,
        interval_minutes: int,
        timezone: str = "UTC",
        window_start=None,
        window_end=None,
        hourly_rate: Decimal = Decimal("0"),
        now: Optional[DateTime] = None,
    ) -> SaveResult:
        """
        Validate, expand and persist a provider's availability.

        Saves for one provider are serialized; the last one wins for the
        pattern, but booked slots always survive regeneration.

        Raises:
            ValidationError: If the pattern, window or interval is invalid
        """
        with self._slot_store.provider_lock(provider_id):
            warnings = pattern.validate()
            start, end = resolve_window(
                timezone, window_start, window_end,
                horizon_days=self._horizon_days,
                now=now or self._clock(),
            )
            slots = self._expander.expand(
                pattern, exclusions, start, end, timezone, interval_minutes, provider_id,
            )
            settings = AvailabilitySettings(
                provider_id=provider_id,
                timezone=timezone,
                interval_minutes=interval_minutes,
                hourly_rate=Decimal(hourly_rate),
                window_start=start,
                window_end=end if window_end is not None else None,
            )
            upsert = self._slot_store.upsert_window(provider_id, slots)
            self._repository.save_pattern(provider_id, pattern, exclusions, settings)

        logger.info(
            "Saved availability for %s: %d slots generated from %s to %s",
            provider_id, len(slots), start, end,
        )
        return SaveResult(settings=settings, generated=len(slots), upsert=upsert, warnings=warnings)

    def regenerate(self, provider_id: str, now: Optional[DateTime] = None) -> Optional[SaveResult]:
        """
        Re-run expansion from the saved pattern.

        Open-ended windows roll forward from today; fixed windows are
        expanded again as saved. Returns None if nothing is saved.
        """
        saved = self._repository.load_pattern(provider_id)
        if saved is None:
            return None

        settings = saved.settings
        open_ended = settings.window_end is None
        return self.save_availability(
            provider_id,
            saved.pattern,
            saved.exclusions,
            settings.interval_minutes,
            timezone=settings.timezone,
            window_start=None if open_ended else settings.window_start,
            window_end=settings.window_end,
            hourly_rate=settings.hourly_rate,
            now=now,
        )

    def bookable_slots(
        self,
        provider_id: str,
        window_start=None,
        window_end=None,
        now: Optional[DateTime] = None,
    ) -> List[Slot]:
        """Unbooked, not yet started slots for the provider, ordered by (date, start)."""
        return self._slot_store.bookable_slots(provider_id, window_start, window_end, now=now)

    async def reserve_slot(
        self,
        slot_id: str,
        buyer_identity: str,
        contact_info: str = "",
    ) -> BookingAttempt:
        """Reserve one slot; the attempt carries either the record or the failure reason."""
        intent = BookingIntent(slot_id=slot_id, buyer_identity=buyer_identity, contact_info=contact_info)
        return await self._orchestrator.reserve(intent)

    def verify_access(self, holder_identity: str, booking_id: str) -> JoinCapability:
        """
        Issue a join capability or raise AccessDeniedError with the reason.
        """
        return self._verifier.verify(holder_identity, booking_id)
