"""FastAPI app factory for orderflow."""

import asyncio
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from orderflow.api import (
    admin_router,
    order_router,
    payment_webhook_router,
    register_exception_handlers,
    supplier_webhook_router,
)
from orderflow.config import OrderflowSettings
from orderflow.domain import orderflow
from orderflow.services import build_services
from orderflow.utils.logging import bind_context, clear_context


def create_app(settings: OrderflowSettings, **overrides) -> FastAPI:
    """Build the app around one set of services. ``overrides`` go to ``build_services``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = asyncio.Event()
        sync_task = None
        if settings.tracking.enabled:
            sync_task = asyncio.create_task(app.state.services.scheduler.run_forever(orderflow, stop))
        yield
        stop.set()
        if sync_task is not None:
            await sync_task
        app.state.services.shutdown()

    app = FastAPI(
        title="Orderflow API",
        description="Order fulfillment: checkout, payment confirmation, supplier sync and tracking",
        lifespan=lifespan,
    )
    with orderflow.domain_context():
        app.state.services = build_services(settings, orderflow, **overrides)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def domain_context_middleware(request: Request, call_next):
        """Push the orderflow domain context and a request id for each request."""
        clear_context()
        bind_context(request_id=request.headers.get("x-request-id") or uuid.uuid4().hex, path=request.url.path)
        with orderflow.domain_context():
            response = await call_next(request)
        return response

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------
    app.include_router(order_router)
    app.include_router(payment_webhook_router)
    app.include_router(supplier_webhook_router)
    app.include_router(admin_router)
    register_exception_handlers(app)

    # -----------------------------------------------------------------------
    # Health
    # -----------------------------------------------------------------------
    @app.get("/health")
    async def health():
        services = app.state.services
        return JSONResponse(
            content={
                "status": "ok",
                "domain": orderflow.name,
                "environment": settings.environment,
                "payment_providers": services.gateways.names(),
                "supplier": services.supplier.supplier_id,
                "tracking_sync": settings.tracking.enabled,
            }
        )

    return app
