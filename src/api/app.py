from __future__ import annotations

from fastapi import FastAPI

from core.doc_converter.config import AppConfig
from core.doc_converter.orchestrator import ConversionOrchestrator
from core.doc_converter.store import JobStore
from core.settings import get_settings, load_app_config

from .routers import health, jobs


def create_app(config: AppConfig | None = None) -> FastAPI:
    config = config or load_app_config(get_settings())
    if not config.runtime.enable_local_api:
        raise RuntimeError("Local API is disabled. Enable it via configuration or environment.")

    app = FastAPI(title="Document Conversion Jobs", version=health.API_VERSION)
    app.state.config = config
    store = JobStore(config)
    app.state.store = store
    app.state.orchestrator = ConversionOrchestrator(config, store)

    app.include_router(health.router)
    app.include_router(jobs.router)

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - FastAPI lifecycle
        orchestrator: ConversionOrchestrator = app.state.orchestrator
        orchestrator.shutdown()

    return app


__all__ = ["create_app"]
