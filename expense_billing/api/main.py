"""
Main FastAPI application.
Machine-to-machine only - no browser clients, so no CORS.

Endpoints:
- /webhooks/stripe - Stripe billing webhook handler
- /health - Health check
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from dotenv import load_dotenv

from ..config import get_settings

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing STRIPE_WEBHOOK_SECRET is fatal - refuse to start
    settings = get_settings()
    logging.getLogger(__name__).info(
        f"Billing webhooks starting (replay store: {settings.replay_store})"
    )
    yield


# Create app
app = FastAPI(
    title="Expense Billing Webhooks",
    description="Stripe webhook ingestion and subscription reconciliation",
    version="1.0.0",
    docs_url="/docs" if os.environ.get("APP_ENV") == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {"status": "healthy", "version": "1.0.0"}


# Import and include routers
from .routes import webhooks

app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
