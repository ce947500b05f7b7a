"""
Dependency wiring for the FastAPI app.

Sync routes run on a thread pool, so the singletons are built under a
module lock and checked again once it is held.
"""

from __future__ import annotations

import threading
from datetime import timedelta

from spot_tracker.backup import BackupScheduler
from spot_tracker.config import get_settings
from spot_tracker.coordinator import FeedClient, FetchCoordinator
from spot_tracker.db import EventStore, InMemoryEventStore, SqlEventStore
from spot_tracker.mailer import InMemoryMailer, Mailer, SendGridMailer
from spot_tracker.spot_api import InMemoryFeedClient, SpotClient

# Reentrant: the coordinator and scheduler getters call the store getter.
_lock = threading.RLock()
_event_store: EventStore | None = None
_coordinator: FetchCoordinator | None = None
_mailer: Mailer | None = None
_backup_scheduler: BackupScheduler | None = None


def get_event_store() -> EventStore:
    """
    Return a singleton store so the cache and audit state persist across requests.
    """
    global _event_store
    if _event_store:
        return _event_store

    with _lock:
        if _event_store:
            return _event_store
        settings = get_settings()
        if settings.use_in_memory_backends:
            _event_store = InMemoryEventStore(
                api_call_retention=settings.api_call_retention
            )
        else:
            _event_store = SqlEventStore(
                settings.database_url, api_call_retention=settings.api_call_retention
            )
        return _event_store


def get_coordinator() -> FetchCoordinator:
    """
    Return a singleton coordinator; its lock must be shared by every request.
    """
    global _coordinator
    if _coordinator:
        return _coordinator

    with _lock:
        if _coordinator:
            return _coordinator
        settings = get_settings()
        client: FeedClient
        if settings.spot_feed_url:
            client = SpotClient(
                settings.spot_feed_url, timeout=settings.request_timeout_seconds
            )
        elif settings.use_in_memory_backends:
            client = InMemoryFeedClient()
        else:
            raise RuntimeError("SPOT_FEED_ID is not configured")
        _coordinator = FetchCoordinator(
            store=get_event_store(),
            client=client,
            freshness_window=timedelta(seconds=settings.freshness_window_seconds),
        )
        return _coordinator


def get_mailer() -> Mailer:
    global _mailer
    if _mailer:
        return _mailer

    with _lock:
        if _mailer:
            return _mailer
        settings = get_settings()
        if settings.use_in_memory_backends and not settings.sendgrid_configured:
            _mailer = InMemoryMailer()
        else:
            _mailer = SendGridMailer(
                api_key=settings.sendgrid_api_key,
                from_email=settings.sendgrid_from_email,
                from_name=settings.sendgrid_from_name,
            )
        return _mailer


def get_backup_scheduler() -> BackupScheduler:
    global _backup_scheduler
    if _backup_scheduler:
        return _backup_scheduler

    with _lock:
        if _backup_scheduler:
            return _backup_scheduler
        settings = get_settings()
        _backup_scheduler = BackupScheduler(
            store=get_event_store(),
            coordinator=get_coordinator(),
            mailer=get_mailer(),
            recipients=settings.backup_recipients,
            timezone=settings.backup_timezone,
            window_start_hour=settings.backup_window_start_hour,
            window_end_hour=settings.backup_window_end_hour,
        )
        return _backup_scheduler


def reset_dependencies() -> None:
    """Drop the cached singletons (used by tests)."""
    global _event_store, _coordinator, _mailer, _backup_scheduler
    with _lock:
        _event_store = None
        _coordinator = None
        _mailer = None
        _backup_scheduler = None
