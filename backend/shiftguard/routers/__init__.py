"""Shift Marketplace Policy Engine - API Routers"""
from .auth import router as auth_router
from .jobs import router as jobs_router
from .policies import router as policies_router
from .admin import router as admin_router
from .scheduler import router as scheduler_router

__all__ = [
    "auth_router",
    "jobs_router",
    "policies_router",
    "admin_router",
    "scheduler_router",
]
