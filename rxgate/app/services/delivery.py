"""
Prescription delivery.

DeliveryService hands a generated document to a MailTransport. It is built
once with its transport and passed to the workflow; it holds no global state.
Every failure surfaces as DeliveryError.
"""

import logging
import smtplib
from email.message import EmailMessage
from email.utils import parseaddr
from pathlib import Path
from typing import List, Optional, Protocol

from rxgate.app import config
from rxgate.app.errors import DeliveryError
from rxgate.app.models import DocumentHandle

logger = logging.getLogger(__name__)


class MailTransport(Protocol):
    def send(self, message: EmailMessage) -> None:
        ...


class SmtpTransport:
    """SMTP relay transport, one connection per message."""

    def __init__(
        self,
        host: str = config.SMTP_HOST,
        port: int = config.SMTP_PORT,
        username: Optional[str] = config.SMTP_USER,
        password: Optional[str] = config.SMTP_PASSWORD,
        starttls: bool = config.SMTP_STARTTLS,
        timeout: float = config.SMTP_TIMEOUT_SECONDS,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)


class InMemoryTransport:
    """Collects messages instead of sending them (development and tests)."""

    def __init__(self):
        self.outbox: List[EmailMessage] = []

    def send(self, message: EmailMessage) -> None:
        self.outbox.append(message)


def is_deliverable_address(address: Optional[str]) -> bool:
    if not address:
        return False
    _, parsed = parseaddr(address)
    local, _, domain = parsed.partition("@")
    return bool(local) and "." in domain and parsed == address.strip()


class DeliveryService:
    def __init__(self, transport: MailTransport, sender: str = config.SMTP_SENDER):
        self.transport = transport
        self.sender = sender

    def deliver(self, document: DocumentHandle, recipient: Optional[str]) -> None:
        """
        Send a prescription document to a recipient.

        Raises:
            DeliveryError: On a rejected address, unreadable document, or any
                transport failure
        """
        if not is_deliverable_address(recipient):
            raise DeliveryError(f"Recipient address rejected: {recipient!r}")

        try:
            attachment = Path(document.locator).read_bytes()
        except OSError as e:
            raise DeliveryError(f"Document {document.locator} unreadable: {e}")

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        message["Subject"] = "Your Prescription"
        message.set_content("Please find your prescription attached.")
        message.add_attachment(
            attachment,
            maintype="application",
            subtype="pdf",
            filename=document.filename,
        )

        try:
            self.transport.send(message)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"Mail transport failed: {e}")

        logger.info("Delivered %s", document.filename)
