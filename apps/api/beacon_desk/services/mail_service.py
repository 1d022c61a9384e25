from __future__ import annotations

from dataclasses import dataclass, field
import logging
import smtplib
from email.message import EmailMessage
from typing import Iterable, Protocol

from email_validator import validate_email, EmailNotValidError

from ..core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class OutboundMessage:
    to: list[str]
    subject: str
    html_body: str
    text_body: str
    cc: list[str] = field(default_factory=list)
    reply_to: list[str] = field(default_factory=list)


@dataclass
class SendResult:
    ok: bool
    error: str | None = None


class MailTransport(Protocol):
    def send(self, message: OutboundMessage) -> SendResult: ...


def _validate_email(addr: str | None) -> str | None:
    if not addr:
        return None
    try:
        return validate_email(addr, check_deliverability=False).normalized
    except EmailNotValidError:
        return None


def unique_recipients(addresses: Iterable[str | None]) -> list[str]:
    """Valid addresses, case-insensitively de-duplicated, order kept."""
    seen: set[str] = set()
    result: list[str] = []
    for addr in addresses:
        normalized = _validate_email(addr)
        if not normalized:
            if addr:
                logger.info("invalid recipient skipped: %s", addr)
            continue
        key = normalized.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(normalized)
    return result


class SmtpMailTransport:
    def __init__(self, host: str, port: int, sender: str, timeout: int = 10):
        self.host = host
        self.port = port
        self.sender = sender
        self.timeout = timeout

    @property
    def is_ready(self) -> bool:
        return bool(self.host and self.sender)

    def _build_message(self, message: OutboundMessage) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = f"Beacon <{self.sender}>"
        msg["To"] = ", ".join(message.to)
        if message.cc:
            msg["Cc"] = ", ".join(message.cc)
        if message.reply_to:
            msg["Reply-To"] = ", ".join(message.reply_to)
        msg.set_content(message.text_body)
        msg.add_alternative(message.html_body, subtype="html")
        return msg

    def send(self, message: OutboundMessage) -> SendResult:
        if not self.is_ready:
            return SendResult(ok=False, error="SMTP is not configured (SMTP_HOST / SMTP_FROM)")
        if not message.to:
            return SendResult(ok=False, error="No recipients provided")

        msg = self._build_message(message)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.send_message(msg, to_addrs=[*message.to, *message.cc])
        except (smtplib.SMTPException, OSError) as exc:
            logger.exception("mail send failed: %s", message.subject)
            return SendResult(ok=False, error=str(exc) or exc.__class__.__name__)
        logger.info("mail sent: %s -> %s", message.subject, ", ".join(message.to))
        return SendResult(ok=True)


_transport = SmtpMailTransport(
    settings.smtp_host,
    settings.smtp_port,
    settings.smtp_from,
    timeout=settings.smtp_timeout_seconds,
)


def get_mail_transport() -> MailTransport:
    return _transport
