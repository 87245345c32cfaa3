"""Rental lifecycle: storage, booking resolution, message sync, facade."""

from services.rentals.repo import IPhoneRepo, PhoneRepo
from services.rentals.resolver import BookingInfo, RentalResolver
from services.rentals.service import IRentalService, ReconcileResult, RentalService, WebhookResult
from services.rentals.sync import MessageSyncEngine, SyncFailure, SyncReport, SyncResult

__all__ = [
    # Repository
    "IPhoneRepo",
    "PhoneRepo",
    # Resolver
    "RentalResolver",
    "BookingInfo",
    # Sync
    "MessageSyncEngine",
    "SyncReport",
    "SyncResult",
    "SyncFailure",
    # Service
    "IRentalService",
    "RentalService",
    "ReconcileResult",
    "WebhookResult",
]
