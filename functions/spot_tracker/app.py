"""
FastAPI application entry point for the tracker backend.
"""

from __future__ import annotations

from fastapi import FastAPI

from spot_tracker.config import get_settings
from spot_tracker.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="SPOT Tracker Backend (FastAPI)", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
