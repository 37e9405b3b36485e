"""Outbound email over SMTP.

smtplib is blocking, so each send runs in a worker thread. Delivery is
best effort: callers go through the outbox, which records failures and
retries them, so a dead mail server never affects a request transition.
"""

import asyncio
import smtplib
from email.mime.text import MIMEText

import structlog

from skillwave.config import settings
from skillwave.errors import UpstreamError

logger = structlog.get_logger()


class EmailSender:
    """Sends plain-text mail through the configured SMTP server."""

    def __init__(
        self,
        host: str = "",
        port: int = 465,
        user: str = "",
        password: str = "",
        use_ssl: bool = True,
        sender: str = "",
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_ssl = use_ssl
        self.sender = sender

    @classmethod
    def from_settings(cls) -> "EmailSender":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_ssl=settings.smtp_use_ssl,
            sender=settings.email_from,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host)

    async def send(self, to: str, subject: str, text: str) -> bool:
        """Send one message. Returns False when SMTP is not configured.

        Raises UpstreamError when the server rejects or is unreachable.
        """
        if not self.configured:
            logger.info("email.skipped", to=to, subject=subject)
            return False

        msg = MIMEText(text, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to

        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise UpstreamError(f"SMTP delivery to {to} failed: {e}")

        logger.info("email.sent", to=to, subject=subject)
        return True

    def _send_sync(self, msg: MIMEText) -> None:
        smtp_cls = smtplib.SMTP_SSL if self.use_ssl else smtplib.SMTP
        with smtp_cls(self.host, self.port, timeout=30) as server:
            if not self.use_ssl:
                server.starttls()
            if self.user:
                server.login(self.user, self.password)
            server.send_message(msg)


# ─── Message templates ──────────────────────────────────


def request_created_email(name: str, title: str, description: str) -> dict:
    return {
        "subject": f"Your help request has been created: {title}",
        "text": (
            f"Hi {name},\n\nYour help request titled '{title}' has been "
            f"successfully created.\n\nDescription: {description}\n\n"
            "Thank you for using SkillWave!"
        ),
    }


def request_accepted_emails(
    requester_name: str, helper_name: str, title: str
) -> tuple[dict, dict]:
    """(to requester, to helper)"""
    return (
        {
            "subject": "Your request has been accepted!",
            "text": (
                f"Hi {requester_name},\n\nYour request '{title}' has been "
                f"accepted by {helper_name}.\n\nYou can now chat and collaborate."
            ),
        },
        {
            "subject": "You accepted a request!",
            "text": (
                f"Hi {helper_name},\n\nYou have accepted the request '{title}'."
                "\n\nPlease reach out to the requester to get started."
            ),
        },
    )


def request_completed_emails(
    requester_name: str, helper_name: str, title: str
) -> tuple[dict, dict]:
    """(to requester, to helper)"""
    return (
        {
            "subject": "Your help request has been completed!",
            "text": (
                f"Hi {requester_name},\n\nYour help request '{title}' has been "
                f"marked as completed by {helper_name}.\n\n"
                "Thank you for using SkillWave!"
            ),
        },
        {
            "subject": "You completed a help request!",
            "text": (
                f"Hi {helper_name},\n\nYou have marked the request '{title}' as "
                "completed.\n\nThank you for helping on SkillWave!"
            ),
        },
    )


def new_message_email(
    recipient_name: str, sender_name: str, title: str, content: str
) -> dict:
    return {
        "subject": f"New message on request: {title}",
        "text": (
            f"Hi {recipient_name},\n\nYou have a new message from {sender_name} "
            f"regarding the request '{title}':\n\n{content}\n\n"
            "Please log in to SkillWave to reply."
        ),
    }
