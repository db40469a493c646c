"""API main router.

Aggregates all API routers into a single router for inclusion in the app.
"""

from fastapi import APIRouter

from maturamente.api.exercises import router as exercises_router
from maturamente.api.mailing import unsubscribe_router, waitlist_router
from maturamente.api.notes import router as notes_router
from maturamente.api.simulations import router as simulations_router
from maturamente.api.stripe import router as stripe_router
from maturamente.api.subjects import router as subjects_router
from maturamente.api.theory import subtopics_router, topics_router
from maturamente.api.user import router as user_router

router = APIRouter()

# Include sub-routers
router.include_router(subjects_router, prefix="/subjects", tags=["Subjects"])
router.include_router(exercises_router, prefix="/exercises", tags=["Exercises"])
router.include_router(subtopics_router, prefix="/subtopics", tags=["Theory"])
router.include_router(topics_router, prefix="/topics", tags=["Theory"])
router.include_router(notes_router, prefix="/notes", tags=["Notes"])
router.include_router(simulations_router, prefix="/simulations", tags=["Simulations"])
router.include_router(user_router, prefix="/user", tags=["User"])
router.include_router(unsubscribe_router, prefix="/unsubscribe", tags=["Mailing"])
router.include_router(waitlist_router, prefix="/waitlist", tags=["Mailing"])
router.include_router(stripe_router, prefix="/stripe", tags=["Billing"])
