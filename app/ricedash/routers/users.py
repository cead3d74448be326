from dataclasses import asdict

from fastapi import APIRouter, Depends

from app.ricedash.clients.identity_store import IdentityStoreClient
from app.ricedash.core.context import RequestContext
from app.ricedash.core.deps import (
    get_caller_scope,
    get_current_token_data,
    get_identity_store,
    get_policy_engine,
    require_request_context,
)
from app.ricedash.core.scope import ROLE_DISPLAY
from app.ricedash.schemas.users import (
    LocationLabelResponse,
    MeResponse,
    UpdateMeRequest,
    UpdateUserRequest,
    UserMutationResponse,
    UserResponse,
)
from app.ricedash.services.access_policy import AccessPolicyEngine, CallerScope, MutationResult
from app.ricedash.services.user_gateway import UserGateway

router = APIRouter()


def _mutation_response(result: MutationResult) -> UserMutationResponse:
    data = UserResponse.model_validate(result.row) if result.row is not None and result.rows_affected else None
    return UserMutationResponse(rows_affected=result.rows_affected, data=data)


def _me_response(engine: AccessPolicyEngine, caller: CallerScope, user, registered: bool) -> MeResponse:
    labels = engine.resolve_location_labels(user.locations if user is not None else [])
    return MeResponse(
        user=UserResponse.model_validate(user) if user is not None else None,
        role_label=ROLE_DISPLAY[caller.role],
        location_labels=[LocationLabelResponse(**asdict(label)) for label in labels],
        registered=registered,
    )


@router.get("/me", response_model=MeResponse)
def me(
    token_data=Depends(get_current_token_data),
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    user = engine.get_user(caller, caller.external_id)
    registered = False
    if user is None:
        # First sign-in before the identity webhook landed.
        result = engine.register_self(caller, external_id=caller.external_id, name=token_data.username or "User")
        user = result.row
        registered = result.rows_affected == 1
        caller = engine.resolve_caller(caller.external_id)
    return _me_response(engine, caller, user, registered)


@router.patch("/me", response_model=UserMutationResponse)
def update_me(
    payload: UpdateMeRequest,
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    return _mutation_response(engine.update_user(caller, caller.external_id, {"name": payload.name}))


@router.get("/users", response_model=list[UserResponse])
def list_users(
    search: str | None = None,
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    return [UserResponse.model_validate(user) for user in engine.list_users(caller, search=search)]


@router.patch("/users/{external_id}", response_model=UserMutationResponse)
def update_user(
    external_id: str,
    payload: UpdateUserRequest,
    caller: CallerScope = Depends(get_caller_scope),
    context: RequestContext = Depends(require_request_context),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
    identity: IdentityStoreClient = Depends(get_identity_store),
):
    changes = payload.model_dump(exclude_unset=True)
    assignment = {key: changes.pop(key) for key in ("role", "locations") if changes.get(key) is not None}
    if not caller.is_admin or not assignment:
        return _mutation_response(engine.update_user(caller, external_id, {**changes, **assignment}))
    if engine.get_user(caller, external_id) is None:
        return _mutation_response(MutationResult(rows_affected=0))

    # Role and locations live in the identity store; the directory follows it.
    service = UserGateway(engine.db, identity, actor=caller.external_id, trace_id=context.trace_id)
    service.dispatch("update-user", {"external_id": external_id, **assignment})
    engine.forget_caller(external_id)
    if changes.get("name") is not None:
        return _mutation_response(engine.update_user(caller, external_id, changes))
    return _mutation_response(MutationResult(rows_affected=1, row=engine.get_user(caller, external_id)))


@router.delete("/users/{external_id}", response_model=UserMutationResponse)
def delete_user(
    external_id: str,
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    result = engine.delete_user(caller, external_id)
    return UserMutationResponse(rows_affected=result.rows_affected)
