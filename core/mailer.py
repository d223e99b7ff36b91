"""
core/mailer.py -- Minimal SMTP sender.

Used by DebugLog.send_report() and by the password recovery route. Raises
smtplib.SMTPException / OSError on delivery failure; callers decide whether
a failed mail is fatal.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from core.config import Settings, get_settings

logger = logging.getLogger("splkit.mailer")


def send_mail(to: str, subject: str, body: str, html: bool = False, settings: Settings | None = None) -> None:
    """Send a single message through the configured SMTP relay."""
    cfg = settings or get_settings()

    msg = EmailMessage()
    msg["From"] = cfg.mail_from
    msg["To"] = to
    msg["Subject"] = subject
    if html:
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(body, subtype="html")
    else:
        msg.set_content(body)

    with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=10) as smtp:
        smtp.send_message(msg)
    logger.info("Mail sent to %s (%s)", to, subject)
