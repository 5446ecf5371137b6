"""
FastAPI queue service.

Serves the ordered ticket queue: list, append, update/move and delete
entries, with completed entries removed automatically after a fixed
delay. Every mutation goes through the single QueueManager created at
startup so the orders stay a dense 1..N sequence.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .auth import require_queue_writer
from .config import settings, validate_config_on_startup
from .models import (
    DeleteResponse,
    HealthResponse,
    QueueCreateRequest,
    QueueEntryResponse,
    QueueUpdateRequest,
)
from .queue import NotFoundError, QueueError, QueueManager
from .queue.events import QueueEventBus
from .repositories import get_queue_repository, reset_repository

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

# Validate configuration at startup
validate_config_on_startup()

app = FastAPI(title="Queue Service", version=__version__)

# Configure CORS using validated settings
if settings.cors_origins_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

_queue_manager: Optional[QueueManager] = None


def get_queue_manager() -> QueueManager:
    """Dependency returning the running queue manager."""
    if _queue_manager is None:
        raise HTTPException(status_code=503, detail="Queue not available")
    return _queue_manager


# =============================================================================
# Error translation
# =============================================================================


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path}: entry {exc.entry_id} not found")
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


# =============================================================================
# Queue routes
# =============================================================================


@app.get("/queues", response_model=List[QueueEntryResponse])
async def list_queues(manager: QueueManager = Depends(get_queue_manager)) -> List[dict]:
    """Return every entry ascending by order."""
    entries = await manager.list_entries()
    return [entry.to_dict() for entry in entries]


@app.post(
    "/queues",
    status_code=201,
    response_model=QueueEntryResponse,
    dependencies=[Depends(require_queue_writer)],
)
async def create_queue(
    request: QueueCreateRequest,
    manager: QueueManager = Depends(get_queue_manager),
) -> dict:
    """Append an entry at the end of the queue."""
    entry = await manager.create_entry(request.name, request.type)
    return entry.to_dict()


@app.put(
    "/queues/{queue_id}",
    response_model=QueueEntryResponse,
    dependencies=[Depends(require_queue_writer)],
)
async def update_queue(
    queue_id: str,
    request: QueueUpdateRequest,
    manager: QueueManager = Depends(get_queue_manager),
) -> dict:
    """
    Update an entry's fields, moving it when `order` is given.

    Setting the terminal status schedules the automatic removal;
    leaving it cancels the schedule.
    """
    entry = await manager.update_entry(
        queue_id,
        name=request.name,
        type=request.type,
        status=request.status,
        order=request.order,
    )
    return entry.to_dict()


@app.delete(
    "/queues/{queue_id}",
    response_model=DeleteResponse,
    dependencies=[Depends(require_queue_writer)],
)
async def delete_queue(
    queue_id: str,
    manager: QueueManager = Depends(get_queue_manager),
) -> dict:
    """Delete an entry and return the remaining list."""
    await manager.remove_entry(queue_id)
    remaining = await manager.list_entries()
    return {
        "message": "Queue deleted successfully.",
        "queues": [entry.to_dict() for entry in remaining],
    }


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check endpoint for container orchestration.

    Reports store counts and how many removals are pending.
    """
    if _queue_manager is None:
        return HealthResponse(
            status="unavailable",
            store=settings.queue_store,
            total=0,
            terminal=0,
            pending_removals=0,
            events_connected=False,
            timestamp=datetime.now(timezone.utc),
        )

    stats = await _queue_manager.get_stats()
    return HealthResponse(
        status="healthy",
        store=settings.queue_store,
        events_connected=_queue_manager.events.is_connected,
        timestamp=datetime.now(timezone.utc),
        **stats,
    )


# =============================================================================
# Lifecycle
# =============================================================================


@app.on_event("startup")
async def startup_queue_manager():
    """Build the queue manager, compact orders and re-arm pending removals."""
    global _queue_manager

    try:
        repository = get_queue_repository(settings)
        await repository.ensure_indexes()

        events = QueueEventBus(settings.redis_url)
        await events.connect()
        if not settings.redis_url:
            logger.info("Redis not configured, queue events stay in-process")

        manager = QueueManager(
            repository,
            auto_delete_delay=settings.auto_delete_delay,
            initial_status=settings.initial_status,
            terminal_status=settings.terminal_status,
            display_locale=settings.display_locale,
            display_timezone=settings.display_timezone,
            max_conflict_retries=settings.max_conflict_retries,
            event_bus=events,
        )

        if settings.normalize_on_startup:
            await manager.normalize_orders()
        await manager.restore_schedules()

        _queue_manager = manager
        logger.info(f"Queue manager initialized ({settings.queue_store} store)")

    except Exception as e:
        logger.error(f"Failed to initialize queue manager: {e}")
        _queue_manager = None
        reset_repository()


@app.on_event("shutdown")
async def shutdown_queue_manager():
    """Stop pending removals and close connections."""
    global _queue_manager

    if _queue_manager:
        await _queue_manager.close()
        _queue_manager = None
        logger.info("Queue manager stopped")
    reset_repository()
