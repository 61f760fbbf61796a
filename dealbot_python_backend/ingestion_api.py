"""
API endpoints for log ingestion.

Provides endpoints for:
- Starting a background ingestion run over stored log objects
- Processing a single stored object
- Running ingestion synchronously (small datasets, testing)
- Reading ingestion statistics
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from dealbot_python_backend.db_session import get_async_session_context
from dealbot_python_backend.services.ingestion_coordinator import IngestionCoordinator
from dealbot_python_backend.services.object_source import build_object_source

logger = logging.getLogger(__name__)


# Pydantic models for API requests/responses

class ProcessFileRequest(BaseModel):
    """Request model for processing one stored object; accepts ``s3_key`` or ``s3Key``."""
    s3_key: Optional[str] = Field(None, alias="s3Key")

    class Config:
        populate_by_name = True


class IngestionStartedResponse(BaseModel):
    message: str
    started: bool


class IngestionRunResponse(BaseModel):
    success: bool
    processed_entries: int
    errors: List[str]
    conversations_created: int
    messages_created: int


router = APIRouter(prefix="/api/ingestion", tags=["ingestion"])


def get_ingestion_coordinator() -> IngestionCoordinator:
    """Dependency building a coordinator over the configured object source."""
    return IngestionCoordinator(get_async_session_context, build_object_source())


async def _run_ingestion(coordinator: IngestionCoordinator, prefix: Optional[str]) -> None:
    try:
        result = await coordinator.ingest_all(prefix)
    except Exception:  # noqa: BLE001
        logger.exception("Background ingestion failed")
        return
    logger.info(
        "Ingestion completed: %s, processed %d entries, %d errors",
        "SUCCESS" if result.success else "FAILED",
        result.processed_entries,
        len(result.errors),
    )


@router.post("/start", response_model=IngestionStartedResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_ingestion(
    background_tasks: BackgroundTasks,
    prefix: Optional[str] = Query(None, description="Object key prefix filter"),
    coordinator: IngestionCoordinator = Depends(get_ingestion_coordinator),
):
    """Schedule a full ingestion run and return immediately."""
    logger.info("Starting ingestion process with prefix: %s", prefix or "none")
    background_tasks.add_task(_run_ingestion, coordinator, prefix)
    return IngestionStartedResponse(message="Ingestion process started", started=True)


@router.post("/process-file")
async def process_file(
    request: ProcessFileRequest,
    coordinator: IngestionCoordinator = Depends(get_ingestion_coordinator),
):
    """Ingest a single stored object by key and return its per-file result."""
    if not request.s3_key:
        raise HTTPException(status_code=400, detail="s3_key is required")

    logger.info("Processing specific file: %s", request.s3_key)
    try:
        result = await coordinator.process_object(request.s3_key)
    except Exception as exc:  # noqa: BLE001
        logger.exception("File processing failed for %s", request.s3_key)
        raise HTTPException(status_code=500, detail=f"File processing failed: {exc}")

    return result.to_dict()


@router.post("/run-sync", response_model=IngestionRunResponse)
async def run_sync_ingestion(
    prefix: Optional[str] = Query(None, description="Object key prefix filter"),
    coordinator: IngestionCoordinator = Depends(get_ingestion_coordinator),
):
    """Run ingestion in the request; partial failures are reported in the payload."""
    result = await coordinator.ingest_all(prefix)
    return result.to_dict()


@router.get("/stats")
async def get_ingestion_stats(
    coordinator: IngestionCoordinator = Depends(get_ingestion_coordinator),
):
    try:
        stats = await coordinator.get_ingestion_stats()
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to get ingestion stats")
        raise HTTPException(status_code=500, detail=f"Failed to get ingestion stats: {exc}")
    return {"status": "success", "data": stats}


@router.get("/health")
async def health_check():
    return {
        "status": "ok",
        "service": "ingestion_api",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
