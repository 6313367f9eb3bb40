"""
SMTP email channel. Without SMTP_HOST the client logs the message and reports success.
"""
import logging
import smtplib
import ssl
import uuid
from email.message import EmailMessage
from email.utils import make_msgid

from app.core.config import settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    pass


class EmailClient:
    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        secure: bool | None = None,
        sender: str | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.host = settings.smtp_host if host is None else host
        self.port = port or settings.smtp_port
        self.user = settings.smtp_user if user is None else user
        self.password = settings.smtp_password if password is None else password
        self.secure = settings.smtp_secure if secure is None else secure
        self.sender = sender or settings.smtp_from
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def build_message(self, to: str, subject: str, body: str, priority: str = "normal") -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        if priority in ("high", "urgent"):
            msg["X-Priority"] = "1"
            msg["Importance"] = "high"
        msg.set_content(body)
        return msg

    def send(self, to: str, subject: str, body: str, priority: str = "normal") -> str:
        """Send a plain-text email; returns the message id. Raises EmailDeliveryError."""
        if not self.configured:
            message_id = f"mock-{uuid.uuid4().hex}"
            logger.info("email_mock_sent", extra={"channel": "email"})
            return message_id

        msg = self.build_message(to, subject, body, priority)
        try:
            if self.secure:
                server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=ssl.create_default_context())
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            with server:
                if not self.secure:
                    server.starttls(context=ssl.create_default_context())
                if self.user:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("email_send_failed", extra={"channel": "email", "error": str(e)})
            raise EmailDeliveryError(str(e)) from e

        logger.info("email_sent", extra={"channel": "email"})
        return msg["Message-ID"]
