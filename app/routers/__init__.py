"""API routers for the backoffice API."""
from fastapi import APIRouter

from . import health, procedures


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(procedures.router)
    return api_router
