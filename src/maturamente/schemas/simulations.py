"""Schemas for simulation endpoints."""

from uuid import UUID

from pydantic import Field

from maturamente.schemas.common import BaseSchema


class FlagSimulationRequest(BaseSchema):
    """Simulations are flagged by their public slug."""

    simulation_id: str = Field(min_length=1, description="Simulation slug")


class SimulationRequest(BaseSchema):
    simulation_id: UUID


class SimulationFlagResponse(BaseSchema):
    flagged: bool


class SimulationAttemptResponse(BaseSchema):
    success: bool = True
    message: str | None = None
    attempt: int
