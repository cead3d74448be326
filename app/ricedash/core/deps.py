from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError
from pydantic import ValidationError

from app.ricedash.clients.identity_store import IdentityStoreClient
from app.ricedash.clients.stock_feed import StockFeedClient
from app.ricedash.core.context import RequestContext, build_request_context, get_request_context
from app.ricedash.core.error_catalog import AppError, ErrorCatalog
from app.ricedash.core.metrics import metrics
from app.ricedash.core.security import TokenData, bearer_scheme, decode_token
from app.ricedash.db.session import bind_caller, get_db
from app.ricedash.services.access_policy import AccessPolicyEngine, CallerScope


def get_current_token_data(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> TokenData:
    if credentials is None or not credentials.credentials:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    try:
        payload = decode_token(credentials.credentials)
        token_data = TokenData(**payload)
    except (JWTError, ValidationError, TypeError) as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc
    if not token_data.sub:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    return token_data


def require_request_context(
    request: Request,
    token_data: TokenData = Depends(get_current_token_data),
) -> RequestContext:
    trace_id = getattr(request.state, "trace_id", "")
    context = build_request_context(external_id=token_data.sub, trace_id=trace_id)
    request.state.context = context
    request.state.user_id = token_data.sub
    return context


def get_policy_engine(request: Request, db=Depends(get_db)) -> AccessPolicyEngine:
    cache = getattr(request.state, "policy_cache", None)
    if cache is None:
        cache = {}
        request.state.policy_cache = cache
    return AccessPolicyEngine(db, cache=cache)


def get_caller_scope(
    context: RequestContext = Depends(require_request_context),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
) -> CallerScope:
    bind_caller(engine.db, context.external_id)
    return engine.resolve_caller(context.external_id)


def require_admin(caller: CallerScope = Depends(get_caller_scope)) -> CallerScope:
    if not caller.is_admin:
        metrics.increment_rbac_denied(entity="gateway", operation="access")
        raise AppError(ErrorCatalog.PERMISSION_DENIED)
    return caller


def get_identity_store() -> IdentityStoreClient:
    return IdentityStoreClient()


def get_stock_feed() -> StockFeedClient:
    return StockFeedClient()


__all__ = [
    "get_current_token_data",
    "require_request_context",
    "get_request_context",
    "get_policy_engine",
    "get_caller_scope",
    "require_admin",
    "get_identity_store",
    "get_stock_feed",
]
