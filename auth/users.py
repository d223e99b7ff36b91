"""
auth/users.py -- Account operations: login check, registration, user info,
administration and password recovery.

Errors follow the framework convention: expected failures append an
ErrorCode to get_errors() and the method returns False / None; misuse
(no user prototype, params of the wrong type) raises.

SQL comes from a UserStore (see auth/store.py) and runs through the
Database handler, so an application customizes queries by subclassing the
store, not this class.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from core.config import Settings, get_settings
from core.debuglog import DebugLog
from core.errors import ErrorCode, InvalidArgumentError, UserRuntimeError
from db.database import Database
from security.vault import Vault
from validators.email import is_valid_email
from validators.password import PasswordValidator

from auth.models import User
from auth.store import UserStore, expires_iso
from auth.tokens import (
    BCRYPT_MAX_BYTES,
    _DUMMY_HASH,
    check_password,
    generate_recovery_token,
    hash_password,
    hash_token,
    is_legacy_hash,
    verify_password,
)

# Fields never kept in userinfo after a login.
_SECRET_FIELDS = ("passwd", "recovery_hash", "recovery_expires")


def _public(row: dict) -> dict:
    return {k: v for k, v in row.items() if k not in _SECRET_FIELDS}


class Users:
    def __init__(
        self,
        db: Database,
        store: UserStore,
        vault: Vault,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.store = store
        self.vault = vault
        self.settings = settings or get_settings()
        self.log = DebugLog("Users", self.settings)
        self.user_prototype: User | None = None
        self.userinfo: dict = {}
        self.password_validator = PasswordValidator.from_settings(self.settings)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_errors(self) -> list[int]:
        return self.log.errors

    def set_user_prototype(self, user: User) -> None:
        self.user_prototype = user

    def get(self, field: str) -> Any:
        """Return a userinfo field, or None when it is missing or empty."""
        value = self.userinfo.get(field)
        return value if value else None

    def set_user_info(self, info: dict) -> None:
        self.userinfo = dict(info)

    def _error(self, code: ErrorCode, location: str) -> None:
        self.log.message("error", code.message, location, code)

    def _sql_error(self, code: ErrorCode, location: str, stmt) -> None:
        self.log.message("sql", code.message, location, code, stmt, self.db.error())

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def check_login(self, data: dict) -> int | None:
        """Verify username/passwd. Returns the user_id or None.

        Always runs bcrypt, even for unknown usernames, so response time does
        not reveal which usernames exist.
        """
        username = (data.get("username") or "").strip()
        passwd = data.get("passwd") or ""
        allowed = True
        if not username:
            self._error(ErrorCode.USERNAME_EMPTY, "Users.check_login")
            allowed = False
        if not passwd:
            self._error(ErrorCode.PASSWORD_EMPTY, "Users.check_login")
            allowed = False
        if not allowed:
            return None

        stmt = self.store.sql_login({"username": username, "passwd": passwd})
        if stmt is None or not self.db.query(stmt):
            self._sql_error(ErrorCode.LOGIN_QUERY_FAILED, "Users.check_login", stmt)
            return None

        if self.db.num_rows() != 1:
            verify_password(passwd, _DUMMY_HASH)
            self._error(ErrorCode.LOGIN_NOT_FOUND, "Users.check_login")
            return None

        row = self.db.fetch_assoc()
        if not check_password(self.vault, passwd, row):
            self._error(ErrorCode.LOGIN_NOT_FOUND, "Users.check_login")
            return None

        if int(row.get("active") or 0) != 1:
            self._error(ErrorCode.USER_INACTIVE, "Users.check_login")
            return None

        user_id = row["user_id"]
        if is_legacy_hash(row.get("passwd")):
            if self.db.query(self.store.sql_set_password(user_id, hash_password(passwd))):
                self.log.message("log", f"Upgraded legacy password hash for user {user_id}", "Users.check_login")
        self.db.query(self.store.sql_touch_login(user_id))

        self.userinfo = _public(row)
        return user_id

    # ------------------------------------------------------------------
    # User info
    # ------------------------------------------------------------------

    def get_user_info(self, user_id: int = 0) -> dict | None:
        """Load a user row (without secrets) and make it the current userinfo.

        user_id 0 means "the user currently in userinfo".
        """
        if not isinstance(user_id, int) or user_id <= 0:
            user_id = self.userinfo.get("user_id") or 0
        row = self.lookup_user(user_id)
        if row is not None:
            self.userinfo = dict(row)
        return row

    def lookup_user(self, user_id: int) -> dict | None:
        """Return a user row without secrets, leaving userinfo untouched."""
        if not user_id:
            return None

        stmt = self.store.sql_user_info(int(user_id))
        if stmt is None or not self.db.query(stmt):
            self._sql_error(ErrorCode.USER_INFO_QUERY_FAILED, "Users.lookup_user", stmt)
            return None
        if self.db.num_rows() != 1:
            self._error(ErrorCode.USER_INFO_NOT_FOUND, "Users.lookup_user")
            return None
        return _public(self.db.fetch_assoc())

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def get_user_list(self, params: dict | None = None) -> list[User] | None:
        """Return one prototype copy per matching user, or None on failure."""
        if self.user_prototype is None:
            raise UserRuntimeError("No User class prototype has been set.")
        params = {} if params is None else params
        if not isinstance(params, dict):
            raise InvalidArgumentError("The params argument must be a dict.")

        stmt = self.store.sql_get_user_list(params)
        if stmt is None:
            return None
        if not self.db.query(stmt):
            self._sql_error(ErrorCode.USER_LIST_FAILED, "Users.get_user_list", stmt)
            return None

        result = []
        for row in self.db.fetch_all():
            user = self.user_prototype.clone()
            user.set_info(row)
            result.append(user)
        return result

    def _write(self, params, builder, code: ErrorCode, location: str) -> bool:
        if not isinstance(params, dict):
            raise InvalidArgumentError("The params argument must be a dict.")
        stmt = builder(params)
        if stmt is None:
            return False
        if not self.db.query(stmt):
            self._sql_error(code, location, stmt)
            return False
        return True

    def user_add(self, params: dict) -> bool:
        """Insert a user. A plaintext passwd is hashed; regdate defaults to now."""
        if isinstance(params, dict):
            params = dict(params)
            params.setdefault("regdate", self._generate_regdate())
            if params.get("passwd"):
                params["passwd"] = hash_password(params["passwd"])
        return self._write(params, self.store.sql_user_add, ErrorCode.USER_ADD_FAILED, "Users.user_add")

    def user_update(self, params: dict) -> bool:
        """Update a user. A new passwd or active=0 ends all of the user's logins."""
        revoke = False
        if isinstance(params, dict):
            revoke = bool(params.get("passwd")) or (params.get("active") is not None and int(params["active"]) == 0)
            if params.get("passwd"):
                params = {**params, "passwd": hash_password(params["passwd"])}
        updated = self._write(params, self.store.sql_user_update, ErrorCode.USER_UPDATE_FAILED, "Users.user_update")
        if updated and revoke:
            self.forget_logins(int(params["user_id"]))
        return updated

    def user_delete(self, params: dict) -> bool:
        deleted = self._write(params, self.store.sql_user_delete, ErrorCode.USER_DELETE_FAILED, "Users.user_delete")
        if deleted:
            self.forget_logins(int(params["user_id"]))
        return deleted

    def forget_logins(self, user_id: int) -> None:
        """Drop the user's remember-me rows and server-side sessions."""
        for stmt in (self.store.sql_forget_user(user_id), self.store.sql_forget_sessions(user_id)):
            if stmt is not None and not self.db.query(stmt):
                self.log.message("sql", "Could not forget logins", "Users.forget_logins", 0, stmt, self.db.error())

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @staticmethod
    def _generate_regdate() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def _exists(self, stmt) -> bool:
        return stmt is not None and self.db.query(stmt) and self.db.num_rows() > 0

    def _allow_register(self, data: dict) -> bool:
        allowed = True
        username = data["username"]
        passwd = data["passwd"]
        email = data["email"]

        if not username:
            self._error(ErrorCode.REGISTER_USERNAME_EMPTY, "Users.do_register")
            allowed = False
        elif self._exists(self.store.sql_username_exists(username)):
            self._error(ErrorCode.USERNAME_EXISTS, "Users.do_register")
            allowed = False

        if not passwd:
            self._error(ErrorCode.REGISTER_PASSWORD_EMPTY, "Users.do_register")
            allowed = False
        elif len(passwd.encode("utf-8")) > BCRYPT_MAX_BYTES or not self.password_validator.is_valid(passwd):
            self._error(ErrorCode.PASSWORD_TOO_WEAK, "Users.do_register")
            allowed = False

        if not email:
            self._error(ErrorCode.EMAIL_EMPTY, "Users.do_register")
            allowed = False
        elif not is_valid_email(email, self.settings.email_check_dns):
            self._error(ErrorCode.EMAIL_INVALID, "Users.do_register")
            allowed = False
        elif self._exists(self.store.sql_email_exists(email)):
            self._error(ErrorCode.EMAIL_EXISTS, "Users.do_register")
            allowed = False

        return allowed

    def do_register(self, data: dict) -> bool:
        """Create a new active account from username, passwd and email."""
        data = {
            "username": (data.get("username") or "").strip(),
            "passwd": data.get("passwd") or "",
            "email": (data.get("email") or "").strip(),
        }
        if not self._allow_register(data):
            return False

        data["regdate"] = self._generate_regdate()
        data["passwd"] = hash_password(data["passwd"])
        stmt = self.store.sql_register(data)
        if stmt is None or not self.db.query(stmt):
            self._sql_error(ErrorCode.REGISTER_QUERY_FAILED, "Users.do_register", stmt)
            return False
        return True

    # ------------------------------------------------------------------
    # Password recovery
    # ------------------------------------------------------------------

    def recover_password(self, data: dict) -> tuple[dict, str] | None:
        """Stage one: issue a recovery token for the account matching data.

        Returns (account info, raw token) or None. Only the token's HMAC is
        stored. The caller delivers the raw token out of band.
        """
        lookup = {k: (data.get(k) or "").strip() for k in ("email", "username")}
        stmt = self.store.sql_recovery(lookup)
        if stmt is None:
            self._error(ErrorCode.RECOVERY_DATA_MISSING, "Users.recover_password")
            return None
        if not self.db.query(stmt):
            self._sql_error(ErrorCode.RECOVERY_FAILED, "Users.recover_password", stmt)
            return None

        info = self.db.fetch_assoc()
        if info is None or int(info.get("active") or 0) != 1:
            self._error(ErrorCode.RECOVERY_FAILED, "Users.recover_password")
            return None

        token = generate_recovery_token()
        expires = expires_iso(self.settings.recovery_expire_seconds)
        if not self.db.query(self.store.sql_set_recovery(info["user_id"], hash_token(token), expires)):
            self._sql_error(ErrorCode.RECOVERY_FAILED, "Users.recover_password", None)
            return None
        return info, token

    def reset_password(self, data: dict) -> bool:
        """Stage two: set a new password using a token from recover_password()."""
        token = data.get("token") or ""
        passwd = data.get("passwd") or ""
        if not token or not passwd:
            self._error(ErrorCode.RECOVERY_DATA_MISSING, "Users.reset_password")
            return False
        if len(passwd.encode("utf-8")) > BCRYPT_MAX_BYTES or not self.password_validator.is_valid(passwd):
            self._error(ErrorCode.PASSWORD_TOO_WEAK, "Users.reset_password")
            return False

        stmt = self.store.sql_find_recovery(hash_token(token))
        if stmt is None or not self.db.query(stmt):
            self._sql_error(ErrorCode.RECOVERY_FAILED, "Users.reset_password", stmt)
            return False
        info = self.db.fetch_assoc()
        if info is None:
            self._error(ErrorCode.RECOVERY_FAILED, "Users.reset_password")
            return False

        user_id = info["user_id"]
        stmt = self.store.sql_set_password(user_id, hash_password(passwd))
        if not self.db.query(stmt):
            self._sql_error(ErrorCode.RECOVERY_FAILED, "Users.reset_password", stmt)
            return False
        # Old remember-me cookies and sessions must not survive a password reset.
        self.forget_logins(user_id)
        return True

    # ------------------------------------------------------------------

    def close(self, context: dict | None = None) -> None:
        """Send the debug report, if any. Call once at the end of a request."""
        self.log.send_report(context)
