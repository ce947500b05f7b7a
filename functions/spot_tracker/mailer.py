"""
Mail delivery for the daily backup: SendGrid in production, in-memory for tests.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence

from spot_tracker.errors import MailError, MailerNotConfigured

logger = logging.getLogger(__name__)


@dataclass
class MailAttachment:
    filename: str
    content: str
    mime_type: str = "application/json"


class Mailer(Protocol):
    def send(
        self,
        to: Sequence[str],
        subject: str,
        text_body: str,
        html_body: Optional[str] = None,
        attachments: Sequence[MailAttachment] = (),
    ) -> None:
        ...


@dataclass
class InMemoryMailer:
    """Records sent mail instead of delivering it."""

    sent: list[dict] = field(default_factory=list)
    fail_with: Optional[str] = None

    def send(
        self,
        to: Sequence[str],
        subject: str,
        text_body: str,
        html_body: Optional[str] = None,
        attachments: Sequence[MailAttachment] = (),
    ) -> None:
        if self.fail_with:
            raise MailError(self.fail_with)
        self.sent.append(
            {
                "to": list(to),
                "subject": subject,
                "text": text_body,
                "html": html_body or text_body,
                "attachments": list(attachments),
            }
        )


class SendGridMailer:
    """Sends mail through the SendGrid v3 API."""

    def __init__(
        self,
        api_key: Optional[str],
        from_email: Optional[str],
        from_name: Optional[str] = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name

    def send(
        self,
        to: Sequence[str],
        subject: str,
        text_body: str,
        html_body: Optional[str] = None,
        attachments: Sequence[MailAttachment] = (),
    ) -> None:
        if not (self.api_key and self.from_email):
            raise MailerNotConfigured(
                "SendGrid is not configured. Set SENDGRID_API_KEY and SENDGRID_FROM_EMAIL."
            )
        if not to:
            raise MailError("No recipients configured for the backup email")

        import sendgrid
        from sendgrid.helpers.mail import (
            Attachment,
            Content,
            Disposition,
            Email,
            FileContent,
            FileName,
            FileType,
            Mail,
            To,
        )

        mail = Mail(
            from_email=Email(self.from_email, self.from_name),
            to_emails=[To(address) for address in to],
            subject=subject,
            plain_text_content=Content("text/plain", text_body),
            html_content=Content("text/html", html_body or text_body),
        )
        for item in attachments:
            encoded = base64.b64encode(item.content.encode("utf-8")).decode("ascii")
            mail.add_attachment(
                Attachment(
                    FileContent(encoded),
                    FileName(item.filename),
                    FileType(item.mime_type),
                    Disposition("attachment"),
                )
            )

        sg = sendgrid.SendGridAPIClient(api_key=self.api_key)
        try:
            response = sg.client.mail.send.post(request_body=mail.get())
        except Exception as exc:
            raise MailError(f"SendGrid send failed: {exc}") from exc
        message_id = None
        if hasattr(response, "headers"):
            message_id = response.headers.get("X-Message-Id")
        logger.info("Message sent: %s", message_id)
