"""Simulation flags and attempt tracking."""

from __future__ import annotations

from uuid import UUID

import structlog

from maturamente.core.clock import Clock, utcnow
from maturamente.core.exceptions import SimulationNotFoundError
from maturamente.models.progress import SimulationAttempt
from maturamente.models.relations import ContentKind
from maturamente.repositories.content import SimulationRepository
from maturamente.repositories.progress import SimulationAttemptRepository
from maturamente.services.relations import RelationService

logger = structlog.get_logger(__name__)


class SimulationService:
    """Flag simulations by slug and record attempts.

    Attempts are numbered per (user, simulation) starting at 1.
    """

    def __init__(
        self,
        relations: RelationService,
        simulation_repo: SimulationRepository,
        attempt_repo: SimulationAttemptRepository,
        clock: Clock = utcnow,
    ) -> None:
        self.relations = relations
        self.simulation_repo = simulation_repo
        self.attempt_repo = attempt_repo
        self.clock = clock

    async def toggle_flag(self, user_id: UUID, slug: str) -> bool:
        """Toggle the flag on the simulation with the given slug.

        Raises:
            SimulationNotFoundError: If no simulation has this slug
        """
        simulation = await self.simulation_repo.get_by_slug(slug)
        if simulation is None:
            raise SimulationNotFoundError(slug=slug)
        return await self.relations.toggle(
            ContentKind.FLAGGED_SIMULATION, user_id, simulation.id
        )

    async def start(self, user_id: UUID, simulation_id: UUID) -> SimulationAttempt:
        """Open a new attempt numbered after all previous ones."""
        attempt = await self.attempt_repo.count_for(user_id, simulation_id) + 1
        record = await self.attempt_repo.create(
            SimulationAttempt(
                user_id=user_id,
                simulation_id=simulation_id,
                attempt=attempt,
                started_at=self.clock(),
            )
        )
        logger.info(
            "simulation_started",
            simulation_id=str(simulation_id),
            user_id=str(user_id),
            attempt=attempt,
        )
        return record

    async def restart(self, user_id: UUID, simulation_id: UUID) -> SimulationAttempt:
        """Begin another attempt; earlier attempts are kept as history."""
        return await self.start(user_id, simulation_id)

    async def complete(self, user_id: UUID, simulation_id: UUID) -> SimulationAttempt:
        """Close the latest open attempt, or record a finished one if none is open."""
        now = self.clock()
        record = await self.attempt_repo.latest_open(user_id, simulation_id)
        if record is None:
            attempt = await self.attempt_repo.count_for(user_id, simulation_id) + 1
            record = await self.attempt_repo.create(
                SimulationAttempt(
                    user_id=user_id,
                    simulation_id=simulation_id,
                    attempt=attempt,
                    started_at=now,
                    completed_at=now,
                )
            )
        else:
            record.completed_at = now
            record = await self.attempt_repo.update(record)

        logger.info(
            "simulation_completed",
            simulation_id=str(simulation_id),
            user_id=str(user_id),
            attempt=record.attempt,
        )
        return record
