from fastapi import APIRouter
from app.api.v1.endpoints import health, parses

api_router = APIRouter()

api_router.include_router(parses.router, prefix="/parses", tags=["Parses"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])

__all__ = ["api_router"]
