from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kpis.core.logging import configure_logging
from kpis.core.settings import Settings, load_settings
from kpis.infrastructure import OdooClient, OdooError, configure_record_store
from kpis.routes import invoices
from kpis.workers.ocr_refresh import OcrRefreshWorker, configure_ocr_refresh_worker, get_ocr_refresh_worker

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    client: OdooClient | None = None
    if settings.odoo_configured:
        client = OdooClient(
            settings.odoo_url,  # type: ignore[arg-type]
            settings.odoo_db,  # type: ignore[arg-type]
            settings.odoo_username,  # type: ignore[arg-type]
            settings.odoo_password,  # type: ignore[arg-type]
            timeout=settings.odoo_timeout,
        )
        configure_record_store(client)
        configure_ocr_refresh_worker(OcrRefreshWorker(call_timeout=settings.odoo_timeout))
    else:
        logger.warning("ODOO_URL/ODOO_DB/ODOO_USERNAME/ODOO_PASSWORD not set, using the in-memory record store")

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await get_ocr_refresh_worker().drain()
        if client is not None:
            await client.aclose()

    app = FastAPI(title="KPIs Invoice API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(OdooError)
    async def odoo_error_handler(_: Request, exc: OdooError) -> JSONResponse:
        logger.error("Odoo request failed (%s): %s", exc.kind.value, exc)
        return JSONResponse(status_code=502, content={"detail": str(exc), "kind": exc.kind.value})

    app.include_router(invoices.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "KPIs Invoice API",
                "docs": "/docs",
                "health": "/api/invoices/ocr-status",
            }
        )

    return app


app = create_app()
