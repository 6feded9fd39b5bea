from fastapi import APIRouter
from src.sentinel.api.dashboard import router as dashboard_router
from src.sentinel.api.operations import router as operations_router

api_router = APIRouter()

api_router.include_router(dashboard_router, tags=["dashboard"])
api_router.include_router(operations_router, tags=["operations"])
