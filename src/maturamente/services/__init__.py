"""Services package for MaturaMente.

This module exports service classes for business logic.
"""

from maturamente.services.account import AccountService
from maturamente.services.billing import (
    BillingService,
    StripeGateway,
    calculate_custom_price,
)
from maturamente.services.cache import (
    CachedSignedUrl,
    InMemorySignedUrlCache,
    RedisSignedUrlCache,
    SignedUrlCache,
    get_signed_url_cache,
    set_signed_url_cache,
)
from maturamente.services.completion import CompletionService, ItemType
from maturamente.services.mailing import MailingService, unsubscribe_token
from maturamente.services.notes import NoteService
from maturamente.services.plan_changes import PlanChangeService
from maturamente.services.relations import RelationService
from maturamente.services.simulations import SimulationService
from maturamente.services.storage import StorageError, StorageService
from maturamente.services.subjects import SubjectService
from maturamente.services.study_sessions import (
    SessionAction,
    StatsType,
    StudySessionService,
)

__all__ = [
    # Cache
    "CachedSignedUrl",
    "InMemorySignedUrlCache",
    "RedisSignedUrlCache",
    "SignedUrlCache",
    "get_signed_url_cache",
    "set_signed_url_cache",
    # Storage
    "StorageError",
    "StorageService",
    # Relations and progress
    "RelationService",
    "CompletionService",
    "ItemType",
    "SimulationService",
    "SessionAction",
    "StatsType",
    "StudySessionService",
    "NoteService",
    "SubjectService",
    # Accounts
    "AccountService",
    # Mailing
    "MailingService",
    "unsubscribe_token",
    # Billing
    "BillingService",
    "PlanChangeService",
    "StripeGateway",
    "calculate_custom_price",
]
