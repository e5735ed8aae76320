from fastapi import APIRouter

from app.api.routes import auth, dashboard, health, notifications, qr, visitor

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(visitor.router, prefix="/visitors", tags=["visitors"])
api_router.include_router(qr.router, prefix="/qr", tags=["qr"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
