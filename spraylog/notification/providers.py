"""Email-delivery providers.

Every provider exposes ``send(to, subject, html_body) -> provider_message_id``
and raises ``ProviderError`` for any delivery failure.  The returned id is
what inbound delivery webhooks quote back.

Safety: recipient addresses are never logged.
"""
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Protocol
from uuid import uuid4

import httpx

from spraylog.core.errors import ProviderError
from spraylog.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class EmailProvider(Protocol):
    def send(self, to: str, subject: str, html_body: str) -> str:
        ...


# ---------------------------------------------------------------------------
# SMTP
# ---------------------------------------------------------------------------

class SMTPEmailProvider:
    """Send through an SMTP relay; the generated Message-ID is the provider id."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int = 587,
        *,
        from_address: str,
        from_name: str | None = None,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout_s: float = 10.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.from_address = from_address
        self.from_name = from_name
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout_s = timeout_s

    def send(self, to: str, subject: str, html_body: str) -> str:
        domain = self.from_address.rpartition("@")[2] or None
        message_id = make_msgid(domain=domain)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name or "", self.from_address))
        msg["To"] = to
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout_s) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password or "")
                server.sendmail(self.from_address, [to], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise ProviderError(f"SMTP delivery failed: {exc}") from exc

        provider_message_id = message_id.strip("<>")
        logger.info("SMTP accepted message %s", provider_message_id)
        return provider_message_id


# ---------------------------------------------------------------------------
# SendGrid (v3 REST API)
# ---------------------------------------------------------------------------

class SendGridEmailProvider:
    """Send through SendGrid's ``/v3/mail/send``; id comes from ``X-Message-Id``."""

    def __init__(
        self,
        api_key: str,
        *,
        from_address: str,
        from_name: str | None = None,
        base_url: str = "https://api.sendgrid.com",
        timeout_s: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._client = client

    def _payload(self, to: str, subject: str, html_body: str) -> dict:
        sender = {"email": self.from_address}
        if self.from_name:
            sender["name"] = self.from_name
        return {
            "personalizations": [{"to": [{"email": to}]}],
            "from": sender,
            "subject": subject,
            "content": [{"type": "text/html", "value": html_body}],
        }

    def send(self, to: str, subject: str, html_body: str) -> str:
        url = f"{self.base_url}/v3/mail/send"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = self._payload(to, subject, html_body)
        try:
            if self._client is not None:
                response = self._client.post(url, json=payload, headers=headers, timeout=self.timeout_s)
            else:
                response = httpx.post(url, json=payload, headers=headers, timeout=self.timeout_s)
        except httpx.HTTPError as exc:
            raise ProviderError(f"SendGrid request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ProviderError(
                f"SendGrid rejected message: HTTP {response.status_code} {response.text[:200]}"
            )

        provider_message_id = response.headers.get("X-Message-Id")
        if not provider_message_id:
            raise ProviderError("SendGrid did not return a message id")

        logger.info("SendGrid accepted message %s", provider_message_id)
        return provider_message_id


# ---------------------------------------------------------------------------
# Logging provider (no credentials configured)
# ---------------------------------------------------------------------------

class LoggingEmailProvider:
    """Accept every message without sending; used when no provider is configured."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send(self, to: str, subject: str, html_body: str) -> str:
        provider_message_id = f"log-{uuid4().hex}"
        self.sent.append((provider_message_id, subject))
        logger.info("Email delivery disabled; logged message %s (%s)", provider_message_id, subject)
        return provider_message_id


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def build_email_provider(settings: Settings | None = None) -> EmailProvider:
    """Return the provider selected by ``EMAIL_PROVIDER``."""
    settings = settings or get_settings()
    name = settings.email_provider.lower()

    if name == "smtp":
        return SMTPEmailProvider(
            settings.smtp_host,
            settings.smtp_port,
            from_address=settings.mail_from,
            from_name=settings.mail_from_name,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout_s=settings.provider_timeout_seconds,
        )

    if name == "sendgrid":
        if not settings.sendgrid_api_key:
            raise ValueError("EMAIL_PROVIDER=sendgrid requires SENDGRID_API_KEY")
        return SendGridEmailProvider(
            settings.sendgrid_api_key,
            from_address=settings.mail_from,
            from_name=settings.mail_from_name,
            base_url=settings.sendgrid_api_url,
            timeout_s=settings.provider_timeout_seconds,
        )

    if name == "log":
        return LoggingEmailProvider()

    raise ValueError(f"Unsupported EMAIL_PROVIDER: {settings.email_provider!r}")
