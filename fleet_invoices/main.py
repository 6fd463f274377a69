"""FastAPI application entry point for the fleet invoice service.

Start the server with::

    uvicorn fleet_invoices.main:app --reload --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fleet_invoices.config import CORS_ORIGINS, UPLOAD_DIR
from fleet_invoices.routers import intelligence, invoices
from fleet_invoices.services.classifier import RuleBasedLineItemClassifier
from fleet_invoices.services.field_normalizer import DictionaryFieldNormalizer
from fleet_invoices.services.intelligence import InvoiceIntelligenceService
from fleet_invoices.services.pipeline import build_default_pipeline

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown logic
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the processing services once and keep them on ``app.state``."""
    os.makedirs(UPLOAD_DIR, exist_ok=True)
    logger.info("Output directory ready: %s", UPLOAD_DIR)

    app.state.pipeline = build_default_pipeline()
    app.state.intelligence = InvoiceIntelligenceService(
        RuleBasedLineItemClassifier(), DictionaryFieldNormalizer()
    )
    logger.info("Fleet invoice service started.")

    yield

    logger.info("Fleet invoice service shutting down.")


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Fleet Invoices",
    description=(
        "Upload vehicle maintenance invoices, extract structured data with "
        "multi-strategy OCR, and classify line items with AI and rule-based fallback."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_ORIGINS != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(invoices.router)
app.include_router(intelligence.router)


@app.get("/api/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Lightweight health-check endpoint for probes and monitoring."""
    return {"status": "ok"}
