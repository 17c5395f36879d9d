from __future__ import annotations

import json
import logging

import httpx
from sqlalchemy.orm import Session

from storefront.core.config import MAILGUN_API_BASE, MAILGUN_API_KEY, MAILGUN_DOMAIN, MAILGUN_FROM
from storefront.email.base import EmailMessage, EmailProvider, EmailSendResult, log_email

logger = logging.getLogger(__name__)


class MailgunEmailProvider(EmailProvider):
    name = "mailgun"
    MAX_RETRIES = 3

    def __init__(
        self,
        *,
        api_key: str = MAILGUN_API_KEY,
        domain: str = MAILGUN_DOMAIN,
        api_base: str = MAILGUN_API_BASE,
        sender: str = MAILGUN_FROM,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.domain = domain
        self.api_base = api_base
        self.sender = sender
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.domain)

    def send(self, db: Session, message: EmailMessage) -> EmailSendResult:
        if not self.configured:
            result = EmailSendResult(status="failed", error="Mailgun credentials missing")
            log_email(db, provider=self.name, message=message, result=result)
            return result

        url = f"{self.api_base}/{self.domain}/messages"
        data = {
            "from": self.sender,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
        }
        if message.category:
            data["o:tag"] = message.category

        last_error: str | None = None
        for attempt in range(1, self.MAX_RETRIES + 1):
            try:
                with httpx.Client(timeout=20.0, transport=self._transport) as client:
                    response = client.post(url, auth=("api", self.api_key), data=data)
            except httpx.HTTPError as exc:
                last_error = str(exc)
                logger.warning("Mailgun transport error attempt=%s error=%s", attempt, last_error)
                continue

            if 200 <= response.status_code < 300:
                provider_id = None
                try:
                    provider_id = response.json().get("id")
                except json.JSONDecodeError:
                    pass
                result = EmailSendResult(status="sent", provider_message_id=provider_id)
                log_email(db, provider=self.name, message=message, result=result)
                return result

            last_error = f"Mailgun error {response.status_code}: {response.text}"
            if response.status_code < 500:
                # 4xx will not succeed on retry
                break
            logger.warning("Mailgun server error attempt=%s status=%s", attempt, response.status_code)

        result = EmailSendResult(status="failed", error=last_error)
        log_email(db, provider=self.name, message=message, result=result)
        return result
