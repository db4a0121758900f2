# FastAPI Application Entry Point
import logging

import httpx
from fastapi import FastAPI

# Configuration and Observability
from document_compliance_service.app.config import settings
from document_compliance_service.app.observability import setup_opentelemetry, logger

# Initialize OpenTelemetry
setup_opentelemetry(service_name=settings.SERVICE_NAME_API)

# Import instrumentors after OTel SDK is initialized
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

# Database connection
from document_compliance_service.infrastructure.database.connection import (
    connect_to_mongo, close_mongo_connection, ensure_indexes, get_db
)
# Kafka Producer lifecycle
from document_compliance_service.infrastructure.kafka.producer import startup_kafka_producer, shutdown_kafka_producer

# API Routers
from document_compliance_service.app.api.v1.endpoints import health as health_router
from document_compliance_service.app.api.v1.endpoints import categories as categories_router
from document_compliance_service.app.api.v1.endpoints import templates as templates_router
from document_compliance_service.app.api.v1.endpoints import user_documents as user_documents_router
from document_compliance_service.app.api.v1.endpoints import sync as sync_router
from document_compliance_service.app.api.v1.endpoints import webhooks as webhooks_router

# --- FastAPI Application Instance ---
app = FastAPI(
    title="Document Compliance Service",
    description="Tracks mandatory document completion per employee and reconciles DocuSeal webhooks.",
    version="0.1.0"
)

@app.on_event("startup")
async def startup_event():
    logger.info("FastAPI application startup...")
    try:
        app.state.http_client = httpx.AsyncClient(timeout=settings.DEFAULT_HTTP_TIMEOUT)
        HTTPXClientInstrumentor().instrument()
        logger.info(f"HTTPX AsyncClient initialized with timeout {settings.DEFAULT_HTTP_TIMEOUT} and instrumented.")

        connect_to_mongo()
        async for database in get_db():
            await ensure_indexes(database)
            break
        logger.info("MongoDB connection established and indexes ensured.")


        await startup_kafka_producer()
        logger.info("Kafka Producer polling started.")

    except Exception as e:
        logger.error(f"Failed during startup: {e}", exc_info=True)

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("FastAPI application shutdown...")

    if hasattr(app.state, 'http_client') and app.state.http_client:
        await app.state.http_client.aclose()
        logger.info("HTTPX AsyncClient closed.")

    await shutdown_kafka_producer()
    logger.info("Kafka Producer shutdown initiated and flushed.")

    close_mongo_connection()
    logger.info("MongoDB connection closed.")

FastAPIInstrumentor.instrument_app(app)
logger.info("FastAPI instrumentation complete.")

# Include API Routers
app.include_router(health_router.router)
app.include_router(categories_router.router, prefix="/api/v1")
app.include_router(templates_router.router, prefix="/api/v1")
app.include_router(user_documents_router.router, prefix="/api/v1")
app.include_router(sync_router.router, prefix="/api/v1")
app.include_router(webhooks_router.router, prefix="/api/v1")

logger.info("API routers included. Application setup complete.")

# To run: uvicorn document_compliance_service.app.main:app --reload --port 8000
