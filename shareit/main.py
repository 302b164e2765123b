from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from shareit.api.middleware import RequestTimingMiddleware
from shareit.api.v1.router import v1_router
from shareit.api.v1.ws import router as ws_router
from shareit.common.logging import setup_logging
from shareit.config import settings
from shareit.integrations.storage import EvidenceStorageClient


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    Path(settings.STORAGE_LOCAL_PATH).mkdir(parents=True, exist_ok=True)
    yield


app = FastAPI(
    title="ShareIt Violations API",
    description="Rental violation reporting, dispute arbitration and deposit settlement",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
origins = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS != "*" else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestTimingMiddleware)

# Locally stored evidence
app.mount("/storage", StaticFiles(directory=settings.STORAGE_LOCAL_PATH, check_dir=False), name="storage")

# API routes
app.include_router(v1_router, prefix="/api/v1")
app.include_router(ws_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    storage_ok = await EvidenceStorageClient().health_check()
    return {
        "status": "healthy" if storage_ok else "degraded",
        "storage": "ok" if storage_ok else "unavailable",
        "service": "shareit",
        "version": "1.0.0",
        "env": settings.APP_ENV,
    }
