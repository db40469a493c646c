"""Models package for MaturaMente.

This module exports the Base class and all model classes so that
``Base.metadata`` knows every table.
"""

from maturamente.models.base import (
    Base,
    CreatedAtMixin,
    TimestampMixin,
    UserRelationMixin,
    UUIDPrimaryKeyMixin,
)
from maturamente.models.billing import (
    ChangeTiming,
    PendingChangeStatus,
    PendingSubscriptionChange,
    PlanChangeType,
    SubjectAccess,
    Subscription,
    SubscriptionStatus,
    WaitlistEntry,
)
from maturamente.models.content import (
    Exercise,
    ExerciseCard,
    Note,
    Simulation,
    Subject,
    Subtopic,
    Topic,
)
from maturamente.models.progress import ExerciseAttempt, SimulationAttempt, StudySession
from maturamente.models.relations import (
    RELATION_MODELS,
    CompletedExerciseCard,
    CompletedSubtopic,
    CompletedTopic,
    ContentKind,
    FlaggedExercise,
    FlaggedExerciseCard,
    FlaggedNote,
    FlaggedSimulation,
)
from maturamente.models.user import AuthSession, User

__all__ = [
    # Base and Mixins
    "Base",
    "UUIDPrimaryKeyMixin",
    "CreatedAtMixin",
    "TimestampMixin",
    "UserRelationMixin",
    # Identity
    "User",
    "AuthSession",
    # Content
    "Subject",
    "Topic",
    "Subtopic",
    "Note",
    "ExerciseCard",
    "Exercise",
    "Simulation",
    # Relations
    "ContentKind",
    "RELATION_MODELS",
    "FlaggedExercise",
    "FlaggedExerciseCard",
    "FlaggedNote",
    "FlaggedSimulation",
    "CompletedTopic",
    "CompletedSubtopic",
    "CompletedExerciseCard",
    # Progress
    "ExerciseAttempt",
    "SimulationAttempt",
    "StudySession",
    # Billing
    "Subscription",
    "SubscriptionStatus",
    "PlanChangeType",
    "ChangeTiming",
    "PendingChangeStatus",
    "PendingSubscriptionChange",
    "SubjectAccess",
    "WaitlistEntry",
]
