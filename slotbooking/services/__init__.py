"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .access_verifier import AccessVerifier
from .booking_orchestrator import BookingOrchestrator, OrchestratorSettings, extract_receipt
from .ports import PersistenceProtocol, SavedAvailability, ValueTransferProtocol
from .scheduling_service import SaveResult, SchedulingService
from .slot_store import SlotStore, UpsertResult

__all__ = [
    "AccessVerifier",
    "BookingOrchestrator",
    "OrchestratorSettings",
    "PersistenceProtocol",
    "SaveResult",
    "SavedAvailability",
    "SchedulingService",
    "SlotStore",
    "UpsertResult",
    "ValueTransferProtocol",
    "extract_receipt",
]
