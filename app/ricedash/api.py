from fastapi import APIRouter

from app.ricedash.core.config import settings
from app.ricedash.routers.gateway import router as gateway_router
from app.ricedash.routers.health import router as health_router
from app.ricedash.routers.locations import router as locations_router
from app.ricedash.routers.metrics import router as metrics_router
from app.ricedash.routers.stock import router as stock_router
from app.ricedash.routers.users import router as users_router
from app.ricedash.routers.webhooks import router as webhooks_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(users_router, prefix="/api", tags=["users"])
api_router.include_router(locations_router, prefix="/api", tags=["locations"])
api_router.include_router(stock_router, prefix="/api", tags=["stock"])
api_router.include_router(gateway_router, prefix="/api", tags=["gateway"])
api_router.include_router(webhooks_router, prefix="/api", tags=["webhooks"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])
