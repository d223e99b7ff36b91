"""Unit tests for core/debuglog.py -- error list and debug mail report."""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock

from core.config import Settings
from core.debuglog import DebugLog


def _log(debug: bool = True) -> DebugLog:
    settings = Settings(debug=debug, secret_key="k" * 32, debug_mail="dev@mail.com", unique_mail="site-a")
    return DebugLog("Users", settings)


def test_error_records_code_and_entry() -> None:
    log = _log()
    log.message("error", "Username empty", "Users.check_login", 1)
    assert log.errors == [1]
    assert log.has_entries()


def test_sql_records_code() -> None:
    log = _log()
    log.message("sql", "Query failed", "Users.do_register", 102, "INSERT ...", "UNIQUE constraint")
    assert log.errors == [102]
    assert "UNIQUE constraint" in log.render()


def test_log_records_no_code() -> None:
    log = _log()
    log.message("log", "Skipped db check", "Authentication.do_auth")
    assert log.errors == []
    assert log.has_entries()


def test_unknown_type_ignored() -> None:
    log = _log()
    log.message("notice", "ignored", "x", 9)
    assert log.errors == []
    assert not log.has_entries()


def test_entries_only_kept_in_debug_mode() -> None:
    log = _log(debug=False)
    log.message("error", "Username empty", "Users.check_login", 1)
    assert log.errors == [1]
    assert not log.has_entries()


def test_render_escapes_html() -> None:
    log = _log()
    log.message("log", "<script>", "loc")
    assert "<script>" not in log.render()
    assert "&lt;script&gt;" in log.render()


def test_send_report(_isolate: MagicMock) -> None:
    log = _log()
    log.message("error", "Username empty", "Users.check_login", 1)
    assert log.send_report({"url": "http://testserver/api"})
    to, subject, body = _isolate.call_args.args
    assert to == "dev@mail.com"
    assert subject == "[DEBUG] Users Class site-a"
    assert "http://testserver/api" in body
    assert _isolate.call_args.kwargs["html"] is True
    assert not log.has_entries()


def test_no_report_when_empty(_isolate: MagicMock) -> None:
    assert not _log().send_report()
    _isolate.assert_not_called()


def test_no_report_outside_debug(_isolate: MagicMock) -> None:
    log = _log(debug=False)
    log.message("error", "Username empty", "Users.check_login", 1)
    assert not log.send_report()
    _isolate.assert_not_called()


def test_mail_failure_is_logged_not_raised(_isolate: MagicMock) -> None:
    _isolate.side_effect = smtplib.SMTPException("relay refused")
    log = _log()
    log.message("error", "Username empty", "Users.check_login", 1)
    assert log.send_report() is False
