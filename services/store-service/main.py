"""Main application entry point."""
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
import redis
import httpx
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from config import (
    API_VERSION,
    INVOICE_DIR,
    INVOICE_URL_PREFIX,
    RATE_LIMIT_ENABLED,
    REDIS_URL,
)
from database import init_db, engine
from monitoring import init_profiling
from logging_config import setup_logging
from routers import admin, orders, payments, products
from redis_rate_limiter import RedisRateLimiter

# Setup structured logging
setup_logging()
logger = logging.getLogger(__name__)

# Sync client for the rate limiting middleware
redis_client = redis.from_url(REDIS_URL, decode_responses=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting application...")

    # Initialize database
    init_db()

    RedisInstrumentor().instrument(redis_client=redis_client)
    app.state.redis_client = redis_client
    logger.info("Redis client initialized")

    # Initialize HTTP client for the payment provider and email API
    http_client = httpx.AsyncClient(timeout=30.0)
    HTTPXClientInstrumentor().instrument_client(http_client)
    app.state.http_client = http_client
    logger.info("HTTP client initialized")

    # Initialize profiling
    init_profiling()

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    await http_client.aclose()
    redis_client.close()
    logger.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Store Service",
    version=API_VERSION,
    lifespan=lifespan
)

# Security middleware with Redis-backed dual-tier rate limiting
if RATE_LIMIT_ENABLED:
    app.add_middleware(
        RedisRateLimiter,
        redis_client=redis_client,
        requests_per_minute_ip=600,
        requests_per_minute_user=120
    )

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Instrument FastAPI and SQLAlchemy
FastAPIInstrumentor.instrument_app(app)
SQLAlchemyInstrumentor().instrument(engine=engine)


# Health check endpoint
@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(products.router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(admin.router)

# Generated invoices
os.makedirs(INVOICE_DIR, exist_ok=True)
app.mount(INVOICE_URL_PREFIX, StaticFiles(directory=INVOICE_DIR), name="invoices")


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
