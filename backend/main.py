import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import settings
from core.limiter import limiter
from database import connect_db, close_db

# Routers
from routers import promotions

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await connect_db()
    logger.info(f"POS Promotions API started (tz={settings.BUSINESS_TIMEZONE}, currency={settings.CURRENCY})")
    yield
    # Shutdown
    await close_db()
    logger.info("POS Promotions API stopped")


app = FastAPI(
    title="POS Promotions API",
    description="Moteur de promotions et de remises pour la caisse restaurant",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(promotions.router, prefix="/api/promotions", tags=["Promotions"])


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "app": "pos-promotions", "version": "1.0.0"}
