from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.ricedash.clients.identity_store import IdentityStoreClient
from app.ricedash.core.context import RequestContext
from app.ricedash.core.deps import get_identity_store, get_policy_engine, require_admin, require_request_context
from app.ricedash.schemas.errors import ApiErrorResponse, ApiValidationErrorResponse, error_example
from app.ricedash.schemas.gateway import GatewayRequest
from app.ricedash.services.access_policy import AccessPolicyEngine, CallerScope
from app.ricedash.services.user_gateway import UserGateway

router = APIRouter()


@router.post(
    "/gateway",
    responses={
        400: {"description": "Invalid command or rejected by the identity store", "model": ApiValidationErrorResponse, "content": error_example("PASSWORD_TOO_SHORT", "Password must be at least 8 characters long")},
        403: {"description": "Caller is not an administrator", "model": ApiErrorResponse},
        500: {"description": "User directory write failed", "model": ApiErrorResponse, "content": error_example("LOCAL_STORE_ERROR", "Failed to write user directory", {"external_id": "user_0001", "compensated": True})},
        502: {"description": "Identity store unavailable", "model": ApiErrorResponse},
        504: {"description": "Identity store timed out", "model": ApiErrorResponse},
    },
)
def gateway(
    payload: GatewayRequest,
    caller: CallerScope = Depends(require_admin),
    context: RequestContext = Depends(require_request_context),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
    identity: IdentityStoreClient = Depends(get_identity_store),
):
    service = UserGateway(engine.db, identity, actor=caller.external_id, trace_id=context.trace_id)
    body = payload.model_dump(exclude={"action"})
    result, status_code = service.dispatch(payload.action, body)
    return JSONResponse(status_code=status_code, content=result)
