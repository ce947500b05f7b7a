"""
Daily backup of the SPOT feed by email.

A backup runs at most once per calendar day (in the reference time zone)
and only inside the configured hour window. Only a successful attempt
closes the day; a failed one is recorded and tried again on the next tick
that still falls inside the window. Concurrent ticks are serialized so the
day gate is checked and closed by one of them at a time.

The backup reads events through the fetch coordinator, so it refreshes
from the feed only when the cache is stale and mails the full stored
history, newest first.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from spot_tracker.clock import Clock, SystemClock
from spot_tracker.coordinator import FetchCoordinator
from spot_tracker.db import EventStore
from spot_tracker.errors import FetchError, MailError
from spot_tracker.mailer import MailAttachment, Mailer
from spot_tracker.spot_api import dump_events
from spot_tracker.types import Event

logger = logging.getLogger(__name__)

ALREADY_BACKED_UP = "already-backed-up-today"
OUTSIDE_WINDOW = "outside-window"
BACKED_UP = "backed-up"
FAILED = "failed"

BACKUP_SUBJECT = "Spot Messages Backup"
BACKUP_BODY = "Please find attached the latest backup of Spot messages."


@dataclass
class BackupOutcome:
    ran: bool
    reason: str
    messages: Optional[list[Event]] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.reason == FAILED

    def as_dict(self) -> dict:
        payload: dict = {"ran": self.ran, "reason": self.reason}
        if self.messages is not None:
            payload["messages"] = [event.as_dict() for event in self.messages]
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass
class BackupScheduler:
    store: EventStore
    coordinator: FetchCoordinator
    mailer: Mailer
    recipients: Sequence[str]
    timezone: str = "America/Los_Angeles"
    window_start_hour: int = 6
    window_end_hour: int = 8
    clock: Clock = field(default_factory=SystemClock)

    def __post_init__(self):
        if not 0 <= self.window_start_hour < self.window_end_hour <= 24:
            raise ValueError(
                "Backup window must satisfy 0 <= start hour < end hour <= 24, got "
                f"{self.window_start_hour}-{self.window_end_hour}"
            )
        self.zone = ZoneInfo(self.timezone)
        self._lock = threading.Lock()

    def backed_up_today(self, now: datetime) -> bool:
        last = self.store.last_backup_attempt()
        if last is None or not last.succeeded:
            return False
        return last.created_at.astimezone(self.zone).date() == now.astimezone(self.zone).date()

    def in_window(self, now: datetime) -> bool:
        hour = now.astimezone(self.zone).hour
        return self.window_start_hour <= hour < self.window_end_hour

    def run_backup_if_due(
        self, now: Optional[datetime] = None, force: bool = False
    ) -> BackupOutcome:
        """
        Runs the backup when it has not succeeded today and `now` is in the window.

        Fetch and mail failures are recorded and reported in the outcome;
        store failures propagate.
        """
        now = now or self.clock.now()
        with self._lock:
            if not force:
                if self.backed_up_today(now):
                    logger.info("Backup skipped: already backed up today")
                    return BackupOutcome(ran=False, reason=ALREADY_BACKED_UP)
                if not self.in_window(now):
                    logger.info("Backup skipped: %s is outside the backup window", now)
                    return BackupOutcome(ran=False, reason=OUTSIDE_WINDOW)
            return self._run(now)

    def _run(self, now: datetime) -> BackupOutcome:
        try:
            events = self.coordinator.get_messages().messages
            self.mailer.send(
                list(self.recipients),
                BACKUP_SUBJECT,
                BACKUP_BODY,
                f"<p>{BACKUP_BODY}</p>",
                [
                    MailAttachment(
                        filename=f"spot_messages_{now.isoformat()}.json",
                        content=dump_events(events),
                    )
                ],
            )
        except (FetchError, MailError) as exc:
            logger.exception("Error during backup")
            self.store.record_backup_attempt(str(exc) or exc.__class__.__name__)
            return BackupOutcome(ran=True, reason=FAILED, error=str(exc))

        self.store.record_backup_attempt()
        logger.info("Successfully backed up %d messages", len(events))
        return BackupOutcome(ran=True, reason=BACKED_UP, messages=events)
