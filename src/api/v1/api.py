from fastapi import APIRouter

from .extraction import router as extraction_router
from .health import router as health_router


api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(extraction_router)
