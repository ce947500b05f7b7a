"""
Decides whether to call the SPOT feed or serve events from the store.

The feed enforces at least 2.5 minutes between calls, so the coordinator
only refetches once the last recorded call is older than the freshness
window. The fetch, audit record and upsert run under one lock; concurrent
callers that saw a stale cache re-check after acquiring it and read the
store instead of calling the feed again.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Protocol

from spot_tracker.clock import Clock, SystemClock
from spot_tracker.db import EventStore
from spot_tracker.errors import FetchError
from spot_tracker.spot_api import parse_spot_messages
from spot_tracker.types import Event, FetchResult

logger = logging.getLogger(__name__)

FRESHNESS_WINDOW = timedelta(minutes=5)


class FeedClient(Protocol):
    def fetch_latest(self) -> FetchResult:
        ...


@dataclass
class MessagesResult:
    messages: list[Event]
    last_api_call_time: Optional[datetime]
    last_api_call_status: Optional[int]
    from_cache: bool

    def as_dict(self) -> dict:
        time_ms = (
            int(self.last_api_call_time.timestamp() * 1000)
            if self.last_api_call_time
            else None
        )
        return {
            "messages": [event.as_dict() for event in self.messages],
            "lastApiRequestTime": time_ms,
            "lastApiResponseStatus": self.last_api_call_status,
            "fromCache": self.from_cache,
        }


@dataclass
class FetchCoordinator:
    store: EventStore
    client: FeedClient
    clock: Clock = field(default_factory=SystemClock)
    freshness_window: timedelta = FRESHNESS_WINDOW

    def __post_init__(self):
        self._lock = threading.Lock()

    def is_stale(self) -> bool:
        last_call = self.store.last_api_call_info().time
        if last_call is None:
            return True
        return last_call < self.clock.now() - self.freshness_window

    def get_messages(self) -> MessagesResult:
        """
        Returns every stored event, refreshing from the feed first when stale.

        Raises:
            FetchError: The refresh failed. The failed call is recorded first.
            StoreError: The store could not be read or written.
        """
        from_cache = True
        if self.is_stale():
            with self._lock:
                # Another caller may have refreshed while we waited.
                if self.is_stale():
                    self._fetch_and_store()
                    from_cache = False
        if from_cache:
            logger.info("Serving SPOT events from cache")

        info = self.store.last_api_call_info()
        return MessagesResult(
            messages=self.store.query_events(),
            last_api_call_time=info.time,
            last_api_call_status=info.status,
            from_cache=from_cache,
        )

    def _fetch_and_store(self) -> list[Event]:
        try:
            result = self.client.fetch_latest()
        except FetchError as exc:
            self.store.record_api_call(
                exc.raw_request, exc.raw_response, exc.status_code
            )
            logger.warning("SPOT refresh failed (status %s): %s", exc.status_code, exc)
            raise
        self.store.record_api_call(
            result.raw_request, result.raw_response, result.status_code
        )
        self.store.upsert_events(result.events)
        logger.info("Stored %d SPOT events", len(result.events))
        return result.events

    def replay_last_call(self) -> Optional[list[Event]]:
        """
        Re-parses the newest recorded feed response and upserts its events.

        Returns None when no call has been recorded yet.
        """
        record = self.store.last_api_call_payload()
        if record is None:
            return None
        events = parse_spot_messages(record.response_payload)
        self.store.upsert_events(events)
        logger.info("Replayed %d SPOT events from the last recorded call", len(events))
        return events

    def ingest_events(self, events: list[Event]) -> int:
        self.store.upsert_events(events)
        return len(events)
