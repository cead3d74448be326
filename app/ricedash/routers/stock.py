from fastapi import APIRouter, Depends, Query

from app.ricedash.clients.stock_feed import StockFeedClient
from app.ricedash.core.deps import get_caller_scope, get_policy_engine, get_stock_feed, require_admin
from app.ricedash.repos.stock import StockQueryFilters
from app.ricedash.schemas.errors import ApiErrorResponse, error_example
from app.ricedash.schemas.stock import (
    StockMutationResponse,
    StockQueryResponse,
    StockRecordPatch,
    StockRecordRequest,
    StockRefreshResponse,
    StockRow,
)
from app.ricedash.services.access_policy import AccessPolicyEngine, CallerScope, MutationResult
from app.ricedash.services.stock_refresh import StockRefreshService

router = APIRouter()


def _mutation_response(result: MutationResult) -> StockMutationResponse:
    data = StockRow.model_validate(result.row) if result.row is not None else None
    return StockMutationResponse(rows_affected=result.rows_affected, data=data)


@router.get("/stock", response_model=StockQueryResponse)
def list_stock(
    product_type: str | None = None,
    location_id: int | None = Query(None, gt=0),
    category_id: int | None = None,
    q: str | None = None,
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    filters = StockQueryFilters(product_type=product_type, location_id=location_id, category_id=category_id, q=q)
    rows = [StockRow.model_validate(row) for row in engine.list_stock(caller, filters)]
    return StockQueryResponse(rows=rows, total=len(rows))


@router.post("/stock", response_model=StockMutationResponse)
def create_stock_record(
    payload: StockRecordRequest,
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    return _mutation_response(engine.create_stock_record(caller, payload.model_dump()))


@router.patch("/stock/{record_id}", response_model=StockMutationResponse)
def update_stock_record(
    record_id: int,
    payload: StockRecordPatch,
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    return _mutation_response(engine.update_stock_record(caller, record_id, payload.model_dump(exclude_unset=True)))


@router.delete("/stock/{record_id}", response_model=StockMutationResponse)
def delete_stock_record(
    record_id: int,
    caller: CallerScope = Depends(get_caller_scope),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
):
    return _mutation_response(engine.delete_stock_record(caller, record_id))


@router.post(
    "/stock/refresh",
    response_model=StockRefreshResponse,
    responses={
        422: {"description": "Feed had no usable records", "model": ApiErrorResponse, "content": error_example("STOCK_REFRESH_EMPTY", "No valid stock records to insert", {"records_fetched": 3, "records_skipped": 3, "timestamp": "2024-05-01T02:00:00"})},
        500: {"description": "Replacement rolled back", "model": ApiErrorResponse},
        502: {"description": "Stock feed failed", "model": ApiErrorResponse},
        504: {"description": "Stock feed timed out", "model": ApiErrorResponse},
    },
)
def refresh_stock(
    _caller: CallerScope = Depends(require_admin),
    engine: AccessPolicyEngine = Depends(get_policy_engine),
    feed: StockFeedClient = Depends(get_stock_feed),
):
    result = StockRefreshService(engine.db, feed).refresh()
    return StockRefreshResponse.model_validate(result, from_attributes=True)
