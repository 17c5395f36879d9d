from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.orm import Session

from storefront.models.email_log import EmailLog


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    category: str | None = None


@dataclass
class EmailSendResult:
    status: str
    provider_message_id: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == "sent"


class EmailProvider(Protocol):
    name: str

    def send(self, db: Session, message: EmailMessage) -> EmailSendResult:
        ...


def log_email(
    db: Session,
    *,
    provider: str,
    message: EmailMessage,
    result: EmailSendResult,
) -> EmailLog:
    entry = EmailLog(
        provider=provider,
        to_email=message.to,
        subject=message.subject[:255],
        category=message.category,
        status=result.status,
        provider_message_id=result.provider_message_id,
        error=result.error,
    )
    db.add(entry)
    return entry
