from __future__ import annotations

from fastapi import APIRouter

from models.schemas import HealthStatus

router = APIRouter(tags=["health"])

API_VERSION = "0.1.0"


@router.get("/health", summary="Health check", response_model=HealthStatus)
def health() -> HealthStatus:
    return HealthStatus(status="ok", version=API_VERSION)


__all__ = ["router"]
