"""
Record types shared across the store, the feed client and the API layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class MessageType(str, Enum):
    CUSTOM = "CUSTOM"
    UNLIMITED_TRACK = "UNLIMITED-TRACK"
    OK = "OK"


@dataclass
class Event:
    """One location ping from the tracker, keyed by the feed's message id."""

    id: str
    message_type: MessageType
    message_content: Optional[str]
    unix_time: int
    latitude: float
    longitude: float

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "messageType": self.message_type.value,
            "messageContent": self.message_content,
            "unixTime": self.unix_time,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


@dataclass
class ApiCallRecord:
    request_payload: Any
    response_payload: Any
    status_code: int
    created_at: datetime


@dataclass
class ApiCallInfo:
    time: Optional[datetime] = None
    status: Optional[int] = None


@dataclass
class BackupAttempt:
    created_at: datetime
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class FetchResult:
    events: list[Event]
    raw_request: dict
    raw_response: Any
    status_code: int
