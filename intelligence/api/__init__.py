"""
API router package for the intelligence host surface.

Mounted by intelligence.main at the application root.
"""

from fastapi import APIRouter

from intelligence.api.intelligence import router as intelligence_router
from intelligence.api.signals import router as signals_router

api_router = APIRouter()

api_router.include_router(signals_router, prefix="/signals", tags=["signals"])
api_router.include_router(intelligence_router, tags=["intelligence"])  # intelligence router has its own prefix

__all__ = [
    "api_router",
    "signals_router",
    "intelligence_router",
]
