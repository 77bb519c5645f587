from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from app.database.database import engine, Base

# Import middleware
from app.common.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware

# Import routers
from app.modules.clients.router import router as clients_router
from app.modules.products.router import router as products_router
from app.modules.inventory.router import movements_router
from app.modules.sequences.router import router as sequences_router
from app.modules.invoices.router import (
    router as invoices_router,
    payments_router,
    credit_notes_router,
)

# Import models for table creation
import app.modules.clients.models
import app.modules.products.models
import app.modules.sequences.models
import app.modules.invoices.models

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Monterrey ledger API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    yield
    logger.info("Monterrey ledger API shutting down...")


# FastAPI app
app = FastAPI(
    title="Monterrey Ledger API",
    description="Facturación fiscal (NCF), inventario, pagos y notas de crédito",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
    lifespan=lifespan,
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
app.include_router(clients_router)
app.include_router(products_router)
app.include_router(movements_router)
app.include_router(sequences_router)
app.include_router(invoices_router)
app.include_router(payments_router)
app.include_router(credit_notes_router)

# Create database tables (only for development/tests - use migrations in production)
if settings.ENVIRONMENT in ("development", "test"):
    Base.metadata.create_all(bind=engine)


@app.get("/")
async def read_root():
    return {
        "message": "Monterrey ledger API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}
