from fastapi import APIRouter

from app.interfaces.api.admin_settings import router as admin_settings_router
from app.interfaces.api.fees import router as fees_router
from app.interfaces.api.health import router as health_router
from app.interfaces.api.platform_health import router as platform_health_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])

business_router = APIRouter(prefix="/api")
business_router.include_router(admin_settings_router)
business_router.include_router(fees_router)
business_router.include_router(platform_health_router)

api_router.include_router(business_router)
