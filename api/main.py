"""
Storefront Order API - Main Application.

FastAPI application with CORS enabled for frontend communication. The
lifespan starts the background expiry sweep so abandoned orders are
cancelled even when no buyer session is open.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from api.logging_config import setup_logging
from config import get_settings
from services.expiry_sweeper import start_expiry_sweeper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Order API starting", extra={"version": __version__})

    sweeper = start_expiry_sweeper(settings.expiry_sweep_interval_seconds)
    try:
        yield
    finally:
        if sweeper is not None:
            task, stop_event = sweeper
            stop_event.set()
            await task
        logger.info("Order API stopped")


# Create FastAPI application
app = FastAPI(
    title="Storefront Order API",
    description="Order lifecycle, bank-transfer payment verification and admin approval for digital accounts",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS - Allow all origins for development
# TODO: Restrict origins to the storefront domain once it is fixed
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status and version.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "storefront-order-api"
    }


@app.get("/", tags=["Root"])
def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": "Storefront Order API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import admin_orders, inventory, orders

app.include_router(orders.router, prefix="/api/v1", tags=["Orders"])
app.include_router(inventory.router, prefix="/api/v1", tags=["Inventory"])
app.include_router(admin_orders.router, prefix="/api/v1", tags=["Admin"])
