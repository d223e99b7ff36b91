"""validators/email.py -- Email address syntax check, optionally with DNS."""

from __future__ import annotations

import logging

from email_validator import EmailNotValidError, validate_email

logger = logging.getLogger("splkit.validators")


def is_valid_email(email: str, check_dns: bool = False) -> bool:
    """Return True if email is syntactically valid.

    With check_dns the domain must also resolve to a mail-capable host.
    """
    if not isinstance(email, str) or not email.strip():
        return False
    try:
        validate_email(email.strip(), check_deliverability=check_dns)
    except EmailNotValidError as exc:
        logger.debug("Rejected email %r: %s", email, exc)
        return False
    return True
