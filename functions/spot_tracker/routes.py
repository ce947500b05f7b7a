"""
HTTP routes for the tracker backend API.
"""

from __future__ import annotations

import logging
import os
import secrets
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse, JSONResponse

from spot_tracker.backup import BackupScheduler
from spot_tracker.config import get_settings
from spot_tracker.coordinator import FetchCoordinator
from spot_tracker.db import EventStore
from spot_tracker.dependencies import (
    get_backup_scheduler,
    get_coordinator,
    get_event_store,
)
from spot_tracker.errors import FetchError, HttpError, ParseError, StoreError
from spot_tracker.schemas import (
    BackupResponse,
    MessagesResponse,
    ReplayResponse,
    StatusResponse,
    UploadRequest,
    UploadResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def require_debug_password(password: str | None = Query(None)) -> None:
    expected = get_settings().debug_password
    if not expected:
        raise HTTPException(status_code=404, detail="Debug routes are disabled")
    if not password or not secrets.compare_digest(password, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _fetch_error_response(exc: FetchError) -> HTTPException:
    detail = {"error": str(exc), "statusCode": exc.status_code or None}
    if isinstance(exc, HttpError):
        detail["error"] = f"SPOT feed answered HTTP {exc.status_code}"
    return HTTPException(status_code=502, detail=detail)


@router.get("/messages", response_model=MessagesResponse)
def get_messages(coordinator: FetchCoordinator = Depends(get_coordinator)):
    """
    Return every stored event, refreshing from the feed when the cache is stale.
    """
    try:
        result = coordinator.get_messages()
    except FetchError as exc:
        raise _fetch_error_response(exc) from exc
    except StoreError as exc:
        logger.exception("Reading events failed")
        raise HTTPException(status_code=500, detail=f"Store failed: {exc}") from exc
    return result.as_dict()


@router.get(
    "/backup", response_model=BackupResponse, response_model_exclude_none=True
)
def run_backup(scheduler: BackupScheduler = Depends(get_backup_scheduler)):
    try:
        outcome = scheduler.run_backup_if_due()
    except StoreError as exc:
        logger.exception("Backup bookkeeping failed")
        raise HTTPException(status_code=500, detail=f"Store failed: {exc}") from exc
    return outcome.as_dict()


@router.get("/download")
def download(
    raw: bool = Query(False),
    store: EventStore = Depends(get_event_store),
):
    """
    Download every stored event as JSON, or the SQLite file itself with ?raw=1.
    """
    date = datetime.now(timezone.utc).date().isoformat()
    if raw:
        path = store.database_path()
        if not path or not os.path.exists(path):
            raise HTTPException(status_code=404, detail="No database file to download")
        return FileResponse(
            path,
            media_type="application/x-sqlite3",
            filename=f"whereiscurtis_backup_{date}.sqlite3",
        )
    try:
        events = store.query_events()
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=f"Store failed: {exc}") from exc
    return JSONResponse(
        content=[event.as_dict() for event in events],
        headers={
            "Content-Disposition": f'attachment; filename="whereiscurtis_backup_{date}.json"'
        },
    )


@router.get(
    "/debug/replay",
    response_model=ReplayResponse,
    dependencies=[Depends(require_debug_password)],
)
def debug_replay(coordinator: FetchCoordinator = Depends(get_coordinator)):
    """
    Re-parse the most recent recorded feed response and store its events.
    """
    try:
        events = coordinator.replay_last_call()
    except ParseError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if events is None:
        raise HTTPException(status_code=404, detail="No previous API request found")
    return ReplayResponse(
        message=f"Successfully replayed and stored {len(events)} messages",
        messages=[event.as_dict() for event in events],
    )


@router.post(
    "/debug/reset",
    response_model=StatusResponse,
    dependencies=[Depends(require_debug_password)],
)
def debug_reset(store: EventStore = Depends(get_event_store)):
    try:
        store.reset()
    except StoreError as exc:
        logger.exception("Database reset failed")
        raise HTTPException(status_code=500, detail="Database reset failed") from exc
    logger.warning("Database reset via debug route")
    return StatusResponse(status="ok")


@router.post(
    "/debug/upload",
    response_model=UploadResponse,
    dependencies=[Depends(require_debug_password)],
)
def debug_upload(
    payload: UploadRequest,
    coordinator: FetchCoordinator = Depends(get_coordinator),
):
    stored = coordinator.ingest_events([item.to_event() for item in payload.messages])
    return UploadResponse(stored=stored)


@router.get("/health", response_model=StatusResponse)
def health(store: EventStore = Depends(get_event_store)):
    try:
        store.ping()
    except StoreError as exc:
        raise HTTPException(
            status_code=500, detail=f"DB health check failed: {exc}"
        ) from exc
    return StatusResponse(status="ok")
