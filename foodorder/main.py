import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status

from foodorder.api.v1.catalog import router as catalog_router
from foodorder.api.v1.orders import router as orders_router
from foodorder.api.v1.payments import router as payments_router
from foodorder.core.config import LOG_LEVEL, PROJECT_NAME, VERSION
from foodorder.core.db import close_db, init_db
from foodorder.core.exception_handlers import setup_exception_handlers

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db()  # Connect to DB and generate schemas
    yield
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")


app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.include_router(orders_router, prefix="/api/v1/orders", tags=["Orders"])
app.include_router(payments_router, prefix="/api/v1/payments", tags=["Payments"])
app.include_router(catalog_router, prefix="/api/v1/catalog", tags=["Catalog Utilities"])

setup_exception_handlers(app)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME, "version": VERSION}
