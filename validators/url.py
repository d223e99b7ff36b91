"""validators/url.py -- http(s) URL check, optionally probing the URL."""

from __future__ import annotations

import logging
from urllib.parse import urlparse

import requests

logger = logging.getLogger("splkit.validators")

_TIMEOUT = 5


def is_valid_url(url: str, check_accessible: bool = False) -> bool:
    """Return True for an absolute http:// or https:// URL with a host.

    With check_accessible a HEAD request (following redirects) must answer
    200. Network errors count as inaccessible.
    """
    if not isinstance(url, str):
        return False
    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.netloc or not parsed.hostname:
        return False

    if not check_accessible:
        return True

    try:
        resp = requests.head(url, allow_redirects=True, timeout=_TIMEOUT)
    except requests.RequestException as exc:
        logger.debug("URL %s not accessible: %s", url, exc)
        return False
    return resp.status_code == 200
