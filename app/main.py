"""
FastAPI application entry point.
Configures routes, middleware, and lifecycle events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import init_db, close_db
from app.exceptions import PaymentFlowError
from app.logging_config import configure_logging
from app.redis import RedisClient
import logging

# Import routers - MUST BE AT TOP LEVEL
from app.api.mercadopago_oauth import router as mercadopago_oauth_router
from app.api.payments import router as payments_router
from app.api.appointments import router as appointments_router
from app.api.webhooks.mercadopago import router as mercadopago_webhook_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager."""
    # Startup
    configure_logging()
    logging.info(f"Starting up {settings.app_name}...")

    if settings.is_development:
        await init_db()

    # Initialize Redis
    try:
        RedisClient.get_client()
    except Exception as e:
        logging.warning(f"Failed to initialize Redis: {e}")

    yield

    # Shutdown
    await RedisClient.close()
    await close_db()
    logging.info("Shutting down...")


app = FastAPI(
    title="Barbearia Pagamentos",
    description="Mercado Pago payment reconciliation for appointments and marketplace orders",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)


@app.exception_handler(PaymentFlowError)
async def payment_flow_exception_handler(request: Request, exc: PaymentFlowError):
    logging.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message},
    )


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logging.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal Server Error"},
    )


# CORS middleware
origins = list(settings.cors_origins)
if settings.is_development:
    origins.append("*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.app_env,
    }


app.include_router(
    mercadopago_oauth_router,
    prefix="/mercadopago",
    tags=["mercadopago"],
)
app.include_router(
    payments_router,
    prefix="/payments",
    tags=["payments"],
)
app.include_router(
    appointments_router,
    prefix="/appointments",
    tags=["appointments"],
)

# Register webhook routes
app.include_router(
    mercadopago_webhook_router,
    prefix="/webhooks",
    tags=["webhooks"],
)
