"""
Client for the SPOT public feed.

The feed answers with
``{"response": {"feedMessageResponse": {"messages": {"message": [...]}}}}``.
Only six fields of each message are kept; everything else is ignored.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from spot_tracker.errors import FetchError, HttpError, NetworkError, ParseError
from spot_tracker.types import Event, FetchResult, MessageType

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds

# The feed reports "no displayable messages in the last 7 days" as an error.
NO_MESSAGES_ERROR_CODE = "E-0195"

REQUIRED_FIELDS = ("id", "messageType", "unixTime", "latitude", "longitude")


def _message_list(payload: Any) -> list:
    try:
        response = payload["response"]
    except (KeyError, TypeError) as exc:
        raise ParseError("Feed payload has no 'response' object") from exc

    errors = response.get("errors") if isinstance(response, dict) else None
    if errors:
        error = errors.get("error", {}) if isinstance(errors, dict) else {}
        if error.get("code") == NO_MESSAGES_ERROR_CODE:
            return []
        raise ParseError(f"Feed returned an error: {error or errors}")

    try:
        messages = response["feedMessageResponse"]["messages"]["message"]
    except (KeyError, TypeError) as exc:
        raise ParseError("Feed payload has no messages list") from exc

    # A feed with a single message returns an object instead of a list.
    if isinstance(messages, dict):
        return [messages]
    if not isinstance(messages, list):
        raise ParseError("Feed messages must be a list")
    return messages


def parse_message(message: Any) -> Event:
    """
    Converts one feed message into an Event.

    Raises:
        ParseError: If a required field is missing or has the wrong type.
    """
    if not isinstance(message, dict):
        raise ParseError(f"Feed message is not an object: {message!r}")
    missing = [name for name in REQUIRED_FIELDS if message.get(name) is None]
    if missing:
        raise ParseError(
            f"Feed message {message.get('id')!r} is missing {', '.join(missing)}"
        )
    try:
        return Event(
            id=str(message["id"]),
            message_type=MessageType(message["messageType"]),
            message_content=message.get("messageContent"),
            unix_time=int(message["unixTime"]),
            latitude=float(message["latitude"]),
            longitude=float(message["longitude"]),
        )
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Feed message {message.get('id')!r} is malformed: {exc}") from exc


def parse_spot_messages(payload: Any) -> list[Event]:
    """
    Parses a full feed response into events.

    A single malformed message fails the whole batch rather than being
    dropped, so a partially understood feed never reaches the store.
    """
    return [parse_message(message) for message in _message_list(payload)]


class SpotClient:
    """Performs one GET against the feed and parses the result."""

    def __init__(self, feed_url: str, timeout: float = REQUEST_TIMEOUT):
        self.feed_url = feed_url
        self.timeout = timeout

    def fetch_latest(self) -> FetchResult:
        """
        Fetches the latest feed page.

        Raises:
            NetworkError: The request never got a response.
            HttpError: The feed answered with a non-2xx status.
            ParseError: The body is not JSON or a message is malformed.
        """
        raw_request = {"method": "GET", "url": self.feed_url}
        try:
            response = requests.get(self.feed_url, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("SPOT feed request failed: %s", exc)
            raise NetworkError(
                f"SPOT feed request failed: {exc}", raw_request=raw_request
            ) from exc

        status_code = response.status_code
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if not 200 <= status_code < 300:
            logger.warning("SPOT feed answered HTTP %s", status_code)
            raise HttpError(
                f"SPOT feed answered HTTP {status_code}",
                raw_request=raw_request,
                raw_response=body,
                status_code=status_code,
            )
        if isinstance(body, str):
            raise ParseError(
                "SPOT feed returned a non-JSON body",
                raw_request=raw_request,
                raw_response=body,
                status_code=status_code,
            )

        try:
            events = parse_spot_messages(body)
        except ParseError as exc:
            raise ParseError(
                str(exc),
                raw_request=raw_request,
                raw_response=body,
                status_code=status_code,
            ) from exc

        logger.info("SPOT feed returned %d messages", len(events))
        return FetchResult(
            events=events,
            raw_request=raw_request,
            raw_response=body,
            status_code=status_code,
        )


def dump_events(events: list[Event]) -> str:
    """Serializes events the way the backup attachment and download carry them."""
    return json.dumps([event.as_dict() for event in events], indent=2)


def feed_payload(events: list[Event]) -> dict:
    """Builds a response in the feed's own JSON shape."""
    return {
        "response": {
            "feedMessageResponse": {
                "count": len(events),
                "messages": {"message": [event.as_dict() for event in events]},
            }
        }
    }


@dataclass
class InMemoryFeedClient:
    """Feed double that serves a fixed set of events, or a fixed error."""

    events: list[Event] = field(default_factory=list)
    error: Optional[FetchError] = None
    delay_seconds: float = 0.0
    calls: int = 0

    def fetch_latest(self) -> FetchResult:
        self.calls += 1
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        return FetchResult(
            events=list(self.events),
            raw_request={"method": "GET", "url": "memory://spot"},
            raw_response=feed_payload(self.events),
            status_code=200,
        )
