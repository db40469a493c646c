"""Repository pattern package for MaturaMente.

This module exports base repository classes and concrete repositories.
"""

from maturamente.repositories.base import BaseRepository
from maturamente.repositories.billing import (
    PendingChangeRepository,
    SubjectAccessRepository,
    SubscriptionRepository,
    WaitlistRepository,
)
from maturamente.repositories.content import (
    ExerciseCardRepository,
    ExerciseRepository,
    NoteRepository,
    SimulationRepository,
    SubjectRepository,
    SubtopicRepository,
    TopicRepository,
)
from maturamente.repositories.progress import (
    ExerciseAttemptRepository,
    SimulationAttemptRepository,
    StudySessionRepository,
)
from maturamente.repositories.relation import UserRelationRepository
from maturamente.repositories.user import UserRepository

__all__ = [
    # Base
    "BaseRepository",
    # Identity
    "UserRepository",
    # Content
    "SubjectRepository",
    "TopicRepository",
    "SubtopicRepository",
    "NoteRepository",
    "ExerciseCardRepository",
    "ExerciseRepository",
    "SimulationRepository",
    # Relations
    "UserRelationRepository",
    # Progress
    "ExerciseAttemptRepository",
    "SimulationAttemptRepository",
    "StudySessionRepository",
    # Billing
    "SubscriptionRepository",
    "PendingChangeRepository",
    "SubjectAccessRepository",
    "WaitlistRepository",
]
