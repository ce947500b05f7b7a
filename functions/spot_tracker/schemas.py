"""
Pydantic schemas for the tracker FastAPI backend.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from spot_tracker.types import Event, MessageType


class EventPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    messageType: MessageType
    messageContent: Optional[str] = None
    unixTime: int
    latitude: float
    longitude: float

    def to_event(self) -> Event:
        return Event(
            id=self.id,
            message_type=self.messageType,
            message_content=self.messageContent,
            unix_time=self.unixTime,
            latitude=self.latitude,
            longitude=self.longitude,
        )


class MessagesResponse(BaseModel):
    messages: list[EventPayload]
    lastApiRequestTime: Optional[int] = None
    lastApiResponseStatus: Optional[int] = None
    fromCache: bool


class BackupResponse(BaseModel):
    ran: bool
    reason: str
    messages: Optional[list[EventPayload]] = None
    error: Optional[str] = None


class UploadRequest(BaseModel):
    messages: list[EventPayload]


class UploadResponse(BaseModel):
    stored: int


class ReplayResponse(BaseModel):
    message: str
    messages: list[EventPayload]


class StatusResponse(BaseModel):
    status: Literal["ok"]
