from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from storefront.core.config import IS_DEV
from storefront.email.base import EmailMessage, EmailProvider, EmailSendResult
from storefront.email.mailgun_provider import MailgunEmailProvider
from storefront.email.mock_provider import MockEmailProvider

logger = logging.getLogger(__name__)


class EmailService:
    def __init__(
        self,
        *,
        mailgun_provider: MailgunEmailProvider | None = None,
        mock_provider: MockEmailProvider | None = None,
        fallback_to_mock: bool = IS_DEV,
    ) -> None:
        self._mailgun_provider = mailgun_provider or MailgunEmailProvider()
        self._mock_provider = mock_provider or MockEmailProvider()
        self._fallback_to_mock = fallback_to_mock

    def _select_provider(self) -> EmailProvider:
        if self._mailgun_provider.configured:
            return self._mailgun_provider
        return self._mock_provider

    def send_email(self, db: Session, message: EmailMessage) -> EmailSendResult:
        provider = self._select_provider()
        result = provider.send(db, message)
        if not result.success and provider is self._mailgun_provider and self._fallback_to_mock:
            logger.warning("Mailgun failed, using mock provider error=%s", result.error)
            return self._mock_provider.send(db, message)
        return result


email_service = EmailService()
