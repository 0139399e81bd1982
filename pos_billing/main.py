from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import middleware
from pos_billing.common.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware

# Import routers
from pos_billing.modules.orders.router import router as orders_router
from pos_billing.modules.settings.router import router as settings_router
from pos_billing.modules.billing.router import router as billing_router

from pos_billing.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="POS Billing Gateway",
    description="Pasarela de facturación electrónica SRI (Ecuador) para el punto de venta del restaurante",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Add your frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(orders_router)
app.include_router(settings_router)
app.include_router(billing_router)


@app.get("/")
async def read_root():
    return {
        "message": "POS Billing Gateway is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "billing_api": settings.billing_api_base
    }


@app.on_event("startup")
async def startup_event():
    logger.info("POS Billing Gateway starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    logger.info(f"Billing backend: {settings.billing_api_base}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("POS Billing Gateway shutting down...")
