"""
Aktion Film - Backend API
Route layer between the web client and the generation, speech, payment and
workflow providers
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aktion.config import settings
from aktion.errors import register_exception_handlers
from aktion.routers import (
    a2e,
    a2e_generation,
    beta,
    billing,
    contest,
    health,
    runcomfy,
    tts,
    user,
)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One pooled client for every upstream provider
    app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    logger.info(f"Aktion API starting ({settings.environment})")

    yield

    await app.state.http_client.aclose()
    logger.info("Aktion API stopped")


app = FastAPI(
    title="Aktion Film API",
    description="Backend API for Aktion Film AI",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(health.router)
app.include_router(contest.router, prefix="/api")
app.include_router(billing.router, prefix="/api")
app.include_router(a2e.router, prefix="/api")
app.include_router(a2e_generation.router, prefix="/api")
app.include_router(tts.router, prefix="/api")
app.include_router(runcomfy.router, prefix="/api")
app.include_router(user.router, prefix="/api")
app.include_router(beta.router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.environment == "development")
