from fastapi import APIRouter

from accessaudit.features.health.routes.health import router as health_router
from accessaudit.features.scan.routes.scan import router as scan_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(scan_router)
