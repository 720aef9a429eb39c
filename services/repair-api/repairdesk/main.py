import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .routers import auth, codes, customers, equipment, labels, parts, repairs, scanning

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("repairdesk")


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    # Tear down live scanners so no resolve outlives the process.
    await scanning.scan_sessions.close_all()
    logger.info("Scan sessions closed")


app = FastAPI(title="Repair Desk API", version="0.1.0", lifespan=lifespan)

# CORS for the mobile/web front-ends (configurable via CORS_ORIGINS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(customers.router)
app.include_router(equipment.router)
app.include_router(repairs.router)
app.include_router(parts.router)
app.include_router(codes.router)
app.include_router(labels.router)
app.include_router(scanning.router)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok"}
