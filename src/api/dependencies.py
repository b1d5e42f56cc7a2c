"""FastAPI dependency providers for application services."""

from __future__ import annotations

from fastapi import HTTPException, Request

from core.doc_converter.config import AppConfig
from core.doc_converter.orchestrator import ConversionOrchestrator


def get_config(request: Request) -> AppConfig:
    config = getattr(request.app.state, "config", None)
    if config is None:
        raise HTTPException(status_code=503, detail="CONFIG_UNAVAILABLE")
    return config


def get_orchestrator(request: Request) -> ConversionOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="ORCHESTRATOR_UNAVAILABLE")
    return orchestrator


__all__ = ["get_config", "get_orchestrator"]
