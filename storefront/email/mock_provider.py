from __future__ import annotations

import logging
import uuid

from sqlalchemy.orm import Session

from storefront.email.base import EmailMessage, EmailProvider, EmailSendResult, log_email

logger = logging.getLogger(__name__)


class MockEmailProvider(EmailProvider):
    name = "mock"

    def send(self, db: Session, message: EmailMessage) -> EmailSendResult:
        result = EmailSendResult(status="sent", provider_message_id=f"mock-{uuid.uuid4().hex[:10]}")
        log_email(db, provider=self.name, message=message, result=result)
        logger.info("Mock email accepted to=%s subject=%s", message.to, message.subject)
        return result
