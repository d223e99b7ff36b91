"""
core/debuglog.py -- Per-object error list plus optional debug mail report.

Users and Authentication each own one DebugLog. It collects:
  errors  -- numeric ErrorCode values, always (the public error channel)
  entries -- human readable debug entries, when debug is enabled

Every message is also forwarded to the stdlib logger so nothing depends on
the mail report being delivered.

At the end of a request the owner calls send_report(); in debug mode with a
non-empty log the whole thing is mailed to Settings.debug_mail.
"""

from __future__ import annotations

import html
import logging
import pprint
import smtplib
from typing import Any

from core.config import Settings, get_settings
from core.mailer import send_mail


class DebugLog:
    def __init__(self, owner: str, settings: Settings | None = None) -> None:
        self.owner = owner
        self.settings = settings or get_settings()
        self.errors: list[int] = []
        self.entries: list[str] = []
        self.logger = logging.getLogger(f"splkit.{owner.lower()}")

    @property
    def debug(self) -> bool:
        return self.settings.debug

    def message(
        self,
        type: str,
        message: str,
        location: str = "",
        number: int = 0,
        query: Any = "",
        sql_error: str = "",
    ) -> None:
        """Record a message.

        type:
          "sql"   -- appends number to errors; query detail kept in debug mode
          "error" -- appends number to errors and records the message
          "log"   -- records the message only
        Unknown types are ignored.
        """
        if type == "sql":
            if number > 0:
                self.errors.append(int(number))
            self.logger.warning("%s: %s (%s)", location, message, sql_error)
            if self.debug:
                self.entries.append(
                    f"<hr><strong>{html.escape(location)}</strong><br />"
                    f"<b>ERROR:</b> {html.escape(message)}<br />"
                    f"<b>QUERY:</b> {html.escape(str(query))}<br />"
                    f"<b>SQL ERROR:</b> {html.escape(sql_error)}<br />"
                )
        elif type in ("error", "log"):
            if type == "error":
                if number > 0:
                    self.errors.append(int(number))
                self.logger.info("%s: %s [%s]", location, message, number)
            else:
                self.logger.debug("%s: %s", location, message)
            if self.debug:
                self.entries.append(f"<hr><strong>{html.escape(location)}</strong><br />{html.escape(message)}<br />")

    def has_entries(self) -> bool:
        return bool(self.entries)

    def render(self, context: dict | None = None) -> str:
        parts = list(self.entries)
        parts.append("<hr><strong>Other info</strong><hr>")
        parts.append(f"<strong>ERRORS:</strong><pre>{html.escape(pprint.pformat(self.errors))}</pre>")
        for name, value in (context or {}).items():
            parts.append(f"<strong>{html.escape(name.upper())}:</strong><pre>{html.escape(pprint.pformat(value))}</pre>")
        return "\n".join(parts)

    def send_report(self, context: dict | None = None) -> bool:
        """Mail the debug log when debug is enabled and something was logged.

        Returns True if a mail was sent. Delivery failures are logged, never
        raised: the report is a side channel and must not break the request.
        """
        if not (self.debug and self.entries):
            return False
        subject = f"[DEBUG] {self.owner} Class {self.settings.unique_mail}".rstrip()
        try:
            send_mail(self.settings.debug_mail, subject, self.render(context), html=True, settings=self.settings)
        except (smtplib.SMTPException, OSError):
            self.logger.exception("Could not send debug report to %s", self.settings.debug_mail)
            return False
        finally:
            self.entries.clear()
        return True
