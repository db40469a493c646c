"""Simulation endpoints: flags and attempt tracking."""

from typing import Annotated

from fastapi import APIRouter, Depends

from maturamente.dependencies import AuthUser, get_simulation_service
from maturamente.schemas.common import ErrorResponse
from maturamente.schemas.simulations import (
    FlagSimulationRequest,
    SimulationAttemptResponse,
    SimulationFlagResponse,
    SimulationRequest,
)
from maturamente.services.simulations import SimulationService

router = APIRouter()

Simulations = Annotated[SimulationService, Depends(get_simulation_service)]

AUTH_ERRORS = {401: {"model": ErrorResponse, "description": "Not signed in"}}


@router.post(
    "/flag",
    response_model=SimulationFlagResponse,
    summary="Toggle the flag on a simulation",
    responses={
        **AUTH_ERRORS,
        404: {"model": ErrorResponse, "description": "Simulation not found"},
    },
)
async def flag_simulation(
    body: FlagSimulationRequest, user: AuthUser, simulations: Simulations
) -> SimulationFlagResponse:
    """The simulation is identified by its slug, not its id."""
    flagged = await simulations.toggle_flag(user.id, body.simulation_id)
    return SimulationFlagResponse(flagged=flagged)


@router.post(
    "/start",
    response_model=SimulationAttemptResponse,
    summary="Start a new simulation attempt",
    responses=AUTH_ERRORS,
)
async def start_simulation(
    body: SimulationRequest, user: AuthUser, simulations: Simulations
) -> SimulationAttemptResponse:
    record = await simulations.start(user.id, body.simulation_id)
    return SimulationAttemptResponse(
        message="Simulation started successfully", attempt=record.attempt
    )


@router.post(
    "/complete",
    response_model=SimulationAttemptResponse,
    response_model_exclude_none=True,
    summary="Complete the current simulation attempt",
    responses=AUTH_ERRORS,
)
async def complete_simulation(
    body: SimulationRequest, user: AuthUser, simulations: Simulations
) -> SimulationAttemptResponse:
    record = await simulations.complete(user.id, body.simulation_id)
    return SimulationAttemptResponse(attempt=record.attempt)


@router.post(
    "/restart",
    response_model=SimulationAttemptResponse,
    response_model_exclude_none=True,
    summary="Restart a simulation with a new attempt",
    responses=AUTH_ERRORS,
)
async def restart_simulation(
    body: SimulationRequest, user: AuthUser, simulations: Simulations
) -> SimulationAttemptResponse:
    record = await simulations.restart(user.id, body.simulation_id)
    return SimulationAttemptResponse(attempt=record.attempt)
