import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dealbot_python_backend.db_session import async_engine
from dealbot_python_backend.ingestion_api import router as ingestion_router

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("dealbot_backend")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Deal Bot analytics backend starting")
    yield
    logger.info("Disposing database engine...")
    await async_engine.dispose()


# fastapi app
dealbot_app = FastAPI(lifespan=lifespan)

# Configure CORS for the dashboard
dealbot_app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
dealbot_app.include_router(ingestion_router)


@dealbot_app.get("/health")
async def health():
    return {"status": "ok"}
