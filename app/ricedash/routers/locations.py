from fastapi import APIRouter, Depends

from app.ricedash.core.deps import get_caller_scope, get_policy_engine
from app.ricedash.schemas.locations import (
    CreateLocationRequest,
    LocationMutationResponse,
    LocationResponse,
    UpdateLocationRequest,
)
from app.ricedash.services.access_policy import AccessPolicyEngine, CallerScope, MutationResult

router = APIRouter()


def _mutation_response(result: MutationResult) -> LocationMutationResponse:
    data = LocationResponse.model_validate(result.row) if result.row is not None else None
    return LocationMutationResponse(rows_affected=result.rows_affected, data=data)


@router.get("/locations", response_model=list[LocationResponse])
def list_locations(
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    return [LocationResponse.model_validate(location) for location in engine.list_locations(caller)]


@router.post("/locations", response_model=LocationMutationResponse)
def create_location(
    payload: CreateLocationRequest,
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    return _mutation_response(engine.create_location(caller, payload.model_dump()))


@router.patch("/locations/{location_id}", response_model=LocationMutationResponse)
def update_location(
    location_id: int,
    payload: UpdateLocationRequest,
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    return _mutation_response(engine.update_location(caller, location_id, payload.model_dump(exclude_unset=True)))


@router.delete("/locations/{location_id}", response_model=LocationMutationResponse)
def deactivate_location(
    location_id: int,
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    return _mutation_response(engine.deactivate_location(caller, location_id))
