from __future__ import annotations

import asyncio
import logging
import smtplib
import time
from email.message import EmailMessage
from typing import Protocol

from vpsmon.config import Settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, subject: str, body: str) -> bool: ...


class SmtpNotifier:
    """Sends alert mails through an SMTP relay.

    ``smtplib`` blocks, so each send runs in a worker thread and is bounded
    by ``timeout``, which also caps the thread's socket operations. Any
    failure is reported as ``False``.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        mail_from: str = "",
        mail_to: str = "",
        starttls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.mail_from = mail_from or username
        self.mail_to = mail_to
        self.starttls = starttls
        self.timeout = timeout

    async def send(self, subject: str, body: str) -> bool:
        msg = self._build_message(subject, body)
        deadline = time.monotonic() + self.timeout
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._deliver, msg, deadline), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error("SMTP send to %s:%d timed out after %.1fs", self.host, self.port, self.timeout)
            return False
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP send to %s:%d failed: %s", self.host, self.port, exc)
            return False
        return True

    def _build_message(self, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.mail_from
        msg["To"] = self.mail_to
        msg.set_content(body)
        return msg

    def _deliver(self, msg: EmailMessage, deadline: float) -> None:
        # The worker thread outlives a cancelled send, so every SMTP step
        # gets only what is left of the shared deadline.
        def remaining() -> float:
            left = deadline - time.monotonic()
            if left <= 0:
                raise TimeoutError(f"SMTP deadline of {self.timeout:.1f}s exceeded")
            return left

        with smtplib.SMTP(self.host, self.port, timeout=remaining()) as server:
            if self.starttls:
                server.sock.settimeout(remaining())
                server.starttls()
            if self.username and self.password:
                server.sock.settimeout(remaining())
                server.login(self.username, self.password)
            server.sock.settimeout(remaining())
            server.send_message(msg)


class LogNotifier:
    """Writes alerts to the log instead of mailing them (no SMTP relay configured)."""

    async def send(self, subject: str, body: str) -> bool:
        logger.warning("ALERT (no SMTP relay configured): %s\n%s", subject, body)
        return True


def build_notifier(settings: Settings) -> Notifier:
    if not settings.smtp_host:
        logger.warning("VPSMON_SMTP_HOST not set, alerts will only be logged")
        return LogNotifier()
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        mail_from=settings.mail_from,
        mail_to=settings.mail_to,
        starttls=settings.smtp_starttls,
        timeout=settings.notify_timeout,
    )
