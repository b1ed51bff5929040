import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from factoryledger.config import settings
from factoryledger.middleware.exceptions import register_exception_handlers
from factoryledger.middleware.security import SecurityHeadersMiddleware
from factoryledger.routers import health, production, stock
from factoryledger.utils.cache import close_redis

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("factoryledger")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"FactoryLedger starting ({settings.environment})")
    try:
        yield
    finally:
        await close_redis()
        logger.info("FactoryLedger stopped")


app = FastAPI(
    title="FactoryLedger",
    description="Raw material and bottle inventory with FIFO costing and production batches",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware (outermost first) ─────────────────────────────
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(stock.router, prefix="/api/stock", tags=["stock"])
app.include_router(production.router, prefix="/api/production", tags=["production"])
