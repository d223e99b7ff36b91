"""
auth/tokens.py -- Password hashing, cookie values and token utilities.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). The _DUMMY_HASH
       constant enables timing equalization in Users.check_login() so response
       time does not reveal whether a username exists.

  Legacy passwords: rows created before bcrypt hold
       sha512(regdate + vault.encrypt(passwd)). check_password() still
       verifies them; Users.check_login() rehashes to bcrypt on success.

  Cookie and recovery tokens: high-entropy random values. We store
       HMAC-SHA256(SECRET_KEY, raw) so a leaked table cannot be replayed as
       cookies without also knowing SECRET_KEY. The hash is deterministic,
       enabling O(1) lookup by hash.

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from security.vault import Vault

logger = logging.getLogger("splkit.auth")

# bcrypt rejects longer secrets; registration enforces the same bound.
BCRYPT_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("splkit_timing_dummy")


def is_legacy_hash(hashed: str | None) -> bool:
    return bool(hashed) and not hashed.startswith("$2")


def build_legacy_passwd(vault: Vault, salt: str, plain: str) -> str:
    """Return sha512(salt + vault.encrypt(plain)) as hex."""
    return hashlib.sha512((salt + vault.encrypt(plain)).encode("utf-8")).hexdigest()


def check_password(vault: Vault, plain: str, row: dict) -> bool:
    """Verify plain against the passwd column of a users row.

    Dispatches on the stored format: bcrypt for "$2..." hashes, the legacy
    salted SHA-512 scheme (salt = regdate) otherwise.
    """
    stored = row.get("passwd") or ""
    if not stored:
        verify_password(plain, _DUMMY_HASH)
        return False
    if not is_legacy_hash(stored):
        return verify_password(plain, stored)
    candidate = build_legacy_passwd(vault, str(row.get("regdate") or ""), plain)
    return hmac.compare_digest(candidate, stored)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def hide_cookie_name(name: str) -> str:
    """Return the obfuscated cookie name: first 10 hex chars of sha512(name)."""
    return hashlib.sha512(name.encode("utf-8")).hexdigest()[:10]


def generate_cookie_value(username: str) -> str:
    """Return a fresh persistent-login cookie value for username."""
    return hashlib.sha1((secrets.token_hex(16) + username).encode("utf-8")).hexdigest()


def fingerprint(user_agent: str) -> str:
    """Hash of the user agent stored next to a persistent login."""
    return hashlib.sha256((user_agent or "").encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Token hashing
# ---------------------------------------------------------------------------


def generate_recovery_token() -> str:
    """Return a URL-safe one-time password recovery token (256 bits)."""
    return secrets.token_urlsafe(32)


def hash_token(raw: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw) as a hex string."""
    return hmac.new(
        get_settings().secret_key.encode(),
        raw.encode(),
        hashlib.sha256,
    ).hexdigest()
