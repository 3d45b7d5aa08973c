"""FastAPI application factory"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from cryptopay_gateway.api.dependencies import get_explorer_client
from cryptopay_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from cryptopay_gateway.api.v1 import cache, payments
from cryptopay_gateway.infrastructure.observability.logging import setup_logging
from cryptopay_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Close the shared explorer connection pool if a request ever built it
    if get_explorer_client.cache_info().currsize:
        await get_explorer_client().aclose()
        get_explorer_client.cache_clear()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="CryptoPay Gateway",
        description="EVM payment verification and monitoring service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(payments.router, prefix="/v1", tags=["payments"])
    app.include_router(cache.router, prefix="/v1", tags=["cache"])

    return app


app = create_app()
