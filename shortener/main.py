"""FastAPI application entry point for the short-link service.

Application Lifecycle Diagram
=============================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ startup:    │
    │ manager.    │
    │ initialize()│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ shutdown:   │
    │ manager.    │
    │ cleanup()   │
    └─────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8080

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8080/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

Key Behaviours
===============
- Settings are read once, here, and passed down to every component.
- Store, cache and generator are built on startup and released on shutdown.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app", "create_app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import Settings, get_settings
from shortener.dependencies import _service_manager
from shortener.routes import router


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await _service_manager.initialize(settings)
        yield
        await _service_manager.cleanup()

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Short code allocation and resolution service",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(app).expose(app)

    app.include_router(router)
    return app


app = create_app()
