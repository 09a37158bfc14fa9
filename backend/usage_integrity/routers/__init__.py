"""Vehicle Usage Integrity Engine - API Routers"""
from .vehicles import router as vehicles_router
from .claims import router as claims_router
from .admin import router as admin_router
from .scheduler import router as scheduler_router

__all__ = [
    "vehicles_router",
    "claims_router",
    "admin_router",
    "scheduler_router",
]
