from fastapi import APIRouter

from app.custody.core.config import settings
from app.custody.routers.health import router as health_router
from app.custody.routers.ledger import router as ledger_router
from app.custody.routers.metrics import router as metrics_router
from app.custody.routers.orders import router as orders_router
from app.custody.routers.remittances import router as remittances_router
from app.custody.routers.requests import router as requests_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(ledger_router, tags=["ledger"])
api_router.include_router(requests_router, tags=["requests"])
api_router.include_router(orders_router, tags=["orders"])
api_router.include_router(remittances_router, tags=["remittances"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])
