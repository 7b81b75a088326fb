"""
FormStock Service — FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from formstock.core.config import get_settings
from formstock.core.redis_client import close_redis
from formstock.db.database import engine, Base
from formstock.middleware.auth import JWTAuthMiddleware
from formstock.middleware.idempotency import IdempotencyMiddleware
from formstock.api import forms, health, public, responses

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(
        "%s %s ready (atomic stock updates: %s)",
        settings.SERVICE_NAME, settings.SERVICE_VERSION, settings.STOCK_ATOMIC_UPDATES,
    )
    yield
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="FormStock Service",
    description="Collaborative forms with per-item stock: claims decrement stock, deleted responses restore it.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last added runs outermost: auth, then idempotency
app.add_middleware(IdempotencyMiddleware)
app.add_middleware(JWTAuthMiddleware)

if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")

app.include_router(public.router)
app.include_router(forms.router)
app.include_router(responses.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}
