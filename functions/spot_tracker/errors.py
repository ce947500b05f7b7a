"""
Error taxonomy shared by the store, the feed client and the mailer.
"""

from __future__ import annotations

from typing import Any, Optional


class TrackerError(Exception):
    """Base class for all errors raised by the tracker backend."""


class FetchError(TrackerError):
    """
    An upstream feed call failed.

    The raw request descriptor and whatever response was received are kept
    on the error so the failed exchange can still be recorded.
    """

    def __init__(
        self,
        message: str,
        *,
        raw_request: Optional[dict] = None,
        raw_response: Any = None,
        status_code: int = 0,
    ):
        super().__init__(message)
        self.raw_request = raw_request or {}
        self.raw_response = raw_response
        self.status_code = status_code


class NetworkError(FetchError):
    """Transport failure; no HTTP response was received."""


class HttpError(FetchError):
    """The feed answered with a non-2xx status."""


class ParseError(FetchError):
    """Malformed JSON or a message missing a required field."""


class StoreError(TrackerError):
    """Underlying storage I/O failed."""


class MailError(TrackerError):
    """Sending the backup email failed."""


class MailerNotConfigured(MailError):
    """Raised when SendGrid credentials are missing."""
