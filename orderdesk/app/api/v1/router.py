from fastapi import APIRouter

from orderdesk.app.api.v1.endpoints.health import router as health_router
from orderdesk.app.api.v1.endpoints.products import router as products_router
from orderdesk.app.api.v1.endpoints.orders import router as orders_router
from orderdesk.app.api.v1.endpoints.admin import router as admin_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(products_router, tags=["products"])
router.include_router(orders_router, tags=["orders"])
router.include_router(admin_router, tags=["admin"])
