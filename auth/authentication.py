"""
auth/authentication.py -- Session authentication with persistent-login cookies.

Cookie trust:
  Once session["auth"] is True the user info is decrypted from
  session["userinfo"] and the users table is not read again. The session
  cookie is signed but held by the client, so its id (session["_sid"]) must
  also still be open in the sessions table; logout, deactivation and password
  changes close it. The remember-me lookup runs only when
    - a user id was just verified by a login (user_id > 0), or
    - the session is not authenticated but the remember-me cookie is present.
  A successful check regenerates the session id and stores the user info
  encrypted by the Vault. A failed cookie check marks the session
  unauthenticated and deletes the stale cookie.

The remember-me cookie name is obfuscated (see hide_cookie_name). Its value
is random; the database only keeps its HMAC, bound to a hash of the user
agent (and optionally the client IP).

Cookies are not written directly. Operations are queued as CookieOp and
flushed onto a response with write_cookies(), which keeps this class free
of any web framework dependency.
"""

from __future__ import annotations

import json
import secrets

from core.config import Settings, get_settings
from core.debuglog import DebugLog
from core.errors import ErrorCode, VaultError
from db.database import Database
from security.vault import Vault

from auth.models import CookieOp, RequestContext
from auth.store import UserStore
from auth.tokens import fingerprint, generate_cookie_value, hash_token, hide_cookie_name
from auth.users import Users


class Authentication:
    def __init__(
        self,
        db: Database,
        users: Users,
        vault: Vault,
        context: RequestContext,
        settings: Settings | None = None,
        store: UserStore | None = None,
    ) -> None:
        self.db = db
        self.users = users
        self.vault = vault
        self.context = context
        self.session = context.session
        self.settings = settings or get_settings()
        self.store = store or users.store
        self.log = DebugLog("Authentication", self.settings)
        self.authenticated = False
        self.cookie: str | None = None
        self.cookie_ops: list[CookieOp] = []

        self.cookie_name = hide_cookie_name(self.settings.cookie_name)
        self.do_auth()

    def get_errors(self) -> list[int]:
        return self.log.errors

    # ------------------------------------------------------------------
    # Session and cookie primitives
    # ------------------------------------------------------------------

    def regenerate_session(self, user_id: int) -> bool:
        """Rotate the session id after a privilege change.

        The old id is closed in the sessions table and the new one recorded
        there, so only the latest copy of the session cookie stays valid.
        """
        self._close_session()
        sid = secrets.token_urlsafe(32)
        stmt = self.store.sql_open_session(user_id, hash_token(sid), self.settings.session_expire)
        if stmt is None or not self.db.query(stmt):
            self.log.message(
                "sql",
                ErrorCode.INTERNAL_ERROR.message,
                "Authentication.regenerate_session",
                ErrorCode.INTERNAL_ERROR,
                stmt,
                self.db.error(),
            )
            return False
        self.session["_sid"] = sid
        return True

    def _close_session(self) -> None:
        sid = self.session.pop("_sid", None)
        if sid:
            stmt = self.store.sql_close_session(hash_token(sid))
            if stmt is not None:
                self.db.query(stmt)

    def kill_session(self) -> None:
        self._close_session()
        self.session.clear()

    def _restore_session(self) -> bool:
        """Trust session["auth"] only while its id is still open server-side."""
        sid = self.session.get("_sid")
        if not sid:
            return False
        try:
            userinfo = json.loads(self.vault.decrypt(self.session.get("userinfo") or ""))
        except (VaultError, ValueError):
            self.log.message("log", "Stored session userinfo is unreadable", "Authentication.do_auth")
            return False
        stmt = self.store.sql_session(hash_token(sid))
        if stmt is None or not self.db.query(stmt) or self.db.num_rows() != 1:
            self.log.message("log", "Session is closed or expired", "Authentication.do_auth")
            return False
        if self.db.fetch_assoc()["user_id"] != userinfo.get("user_id"):
            return False
        self.users.set_user_info(userinfo)
        return True

    def _cookie_op(self, value: str | None) -> CookieOp:
        return CookieOp(
            name=self.cookie_name,
            value=value,
            max_age=self.settings.cookie_expire if value is not None else 0,
            path=self.settings.cookie_path,
            domain=self.settings.cookie_domain or None,
            secure=self.settings.secure_cookies,
        )

    def create_cookie(self) -> None:
        self.cookie_ops.append(self._cookie_op(self.cookie))
        self.log.message("log", f"Cookie expires in {self.settings.cookie_expire}s", "Authentication.create_cookie")

    def delete_cookie(self) -> None:
        self.cookie_ops.append(self._cookie_op(None))

    def write_cookies(self, response) -> None:
        """Apply and drain the queued cookie operations on a Starlette response."""
        while self.cookie_ops:
            op = self.cookie_ops.pop(0)
            if op.value is None:
                response.delete_cookie(op.name, path=op.path, domain=op.domain)
            else:
                response.set_cookie(
                    op.name,
                    value=op.value,
                    max_age=op.max_age,
                    path=op.path,
                    domain=op.domain,
                    secure=op.secure,
                    httponly=op.httponly,
                    samesite="lax",
                )

    def _client_data(self) -> dict:
        return {
            "ip_addr": self.context.ip_addr,
            "headers": fingerprint(self.context.user_agent),
        }

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def do_login(self, data: dict, remember: bool = False) -> bool:
        """Log in with username/passwd. Returns True on success.

        Already authenticated sessions are left alone and report success.
        With remember=True a persistent-login cookie is issued.
        """
        if self.authenticated:
            self.log.message("log", "User already logged in", "Authentication.do_login")
            return True

        user_id = self.users.check_login(data)
        if user_id is None:
            self.log.errors.extend(self.users.get_errors())
            return False

        if remember:
            self.cookie = generate_cookie_value(data.get("username") or "")
            remember_data = {
                **self._client_data(),
                "cookie_hash": hash_token(self.cookie),
                "expire": self.settings.cookie_expire,
            }
            stmt = self.store.sql_remember(user_id, remember_data)
            if stmt is None:
                self.log.message("error", ErrorCode.INTERNAL_ERROR.message, "Authentication.do_login", ErrorCode.INTERNAL_ERROR)
                return False
            if not self.db.query(stmt):
                self.log.message(
                    "sql",
                    ErrorCode.REMEMBER_INSERT_FAILED.message,
                    "Authentication.do_login",
                    ErrorCode.REMEMBER_INSERT_FAILED,
                    stmt,
                    self.db.error(),
                )
                return False
            self.create_cookie()

        return self.do_auth(user_id, bypass_db=True)

    # ------------------------------------------------------------------
    # Cookie check
    # ------------------------------------------------------------------

    def prepare_auth(self) -> dict | None:
        """Collect the data the persistent-login lookup needs, or None without a cookie."""
        cookie = self.context.cookies.get(self.cookie_name)
        if not cookie:
            self.log.message("log", "No authentication cookie present", "Authentication.prepare_auth")
            return None
        return {**self._client_data(), "cookie_hash": hash_token(cookie)}

    def check_auth(self) -> int | None:
        """Return the user_id bound to the remember-me cookie, or None."""
        data = self.prepare_auth()
        if data is None:
            return None
        stmt = self.store.sql_auth(data)
        if stmt is None:
            return None
        if not self.db.query(stmt) or self.db.num_rows() != 1:
            self.log.message("log", f"Cookie authentication failed: {self.db.error()}", "Authentication.check_auth")
            return None
        return self.db.fetch_assoc()["user_id"]

    def do_auth(self, user_id: int = 0, bypass_db: bool = False) -> bool:
        """Establish or restore the authenticated state. Returns success."""
        success = True
        has_cookie = bool(self.context.cookies.get(self.cookie_name))
        auth_flag = self.session.get("auth")

        if user_id <= 0 and auth_flag is True and not self._restore_session():
            # A revoked session may still fall back to the remember-me cookie.
            self._drop_trust()
            auth_flag = False

        if user_id > 0 or (auth_flag is not True and has_cookie):
            if not bypass_db:
                user_id = self.check_auth() or 0
                success = user_id > 0

            userinfo = self.users.get_user_info(user_id) if success else None
            if userinfo is not None and self.regenerate_session(user_id):
                self.session["auth"] = True
                self.session["userinfo"] = self.vault.encrypt(json.dumps(userinfo))
            else:
                success = False
                self._drop_trust()
                if has_cookie and not bypass_db:
                    self.delete_cookie()

        self.authenticated = self.session.get("auth") is True
        return success and self.authenticated

    def _drop_trust(self) -> None:
        self._close_session()
        self.session["auth"] = False
        self.session.pop("userinfo", None)
        self.users.set_user_info({})

    def is_logged_in(self) -> bool:
        return self.authenticated

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def do_logout(self) -> None:
        self.delete_cookie()
        data = self.prepare_auth()
        if data is not None:
            stmt = self.store.sql_logout(data)
            if stmt is not None:
                self.db.query(stmt)
        self.kill_session()
        self.users.set_user_info({})
        self.authenticated = False

    def close(self) -> None:
        """Send the debug reports of this object and its Users."""
        context = {
            "url": self.context.url,
            "session": dict(self.session),
            "cookies": self.context.cookies,
            "headers": self.context.headers,
        }
        self.log.send_report(context)
        self.users.close(context)
