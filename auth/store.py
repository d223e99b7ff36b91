"""
auth/store.py -- SQLAlchemy Core schema and statement builders for auth.

Pattern: Repository, split in two. UserStore owns the schema and *builds*
statements; db.database.Database executes them. Users and Authentication
ask the store for a statement, run it through the Database handler, and
branch on num_rows() / error().

Every builder is a method so an application can subclass UserStore and
replace single queries (extra columns, a different users table) without
touching the flow in Users or Authentication. A builder that returns None
means "no SQL for this operation"; the caller then reports failure.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Cookie, session and recovery tokens are stored as HMACs (see auth/tokens.py).

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, delete, insert, select, update
from sqlalchemy.sql.base import Executable

from db.database import Database

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

users = Table(
    "users",
    _metadata,
    Column("user_id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("passwd", Text, nullable=False),  # bcrypt, or legacy sha512 hex
    Column("email", String(255), nullable=False, unique=True),
    Column("regdate", String(32), nullable=False),  # also the legacy salt
    Column("active", Integer, nullable=False, server_default="1"),
    Column("role", String(30), nullable=False, server_default="member"),
    Column("recovery_hash", String(64)),  # HMAC-SHA256 hex of the recovery token
    Column("recovery_expires", String(32)),
    Column("last_login", String(32)),
)

auth_tokens = Table(
    "auth_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("cookie_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("ip_addr", String(45), nullable=False, server_default=""),
    Column("headers", String(64), nullable=False),  # user agent fingerprint
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)

# Server-side record of each authenticated session. The signed session cookie
# only carries the raw id; logging out deletes the row, so a copy of the
# cookie taken earlier stops being trusted.
sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sid_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("user_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)

# Columns safe to hand to callers; passwd and recovery data never leave the store.
PUBLIC_COLUMNS = (
    users.c.user_id,
    users.c.username,
    users.c.email,
    users.c.regdate,
    users.c.active,
    users.c.role,
    users.c.last_login,
)

# Columns user_add / user_update may write.
_WRITABLE = ("username", "passwd", "email", "regdate", "active", "role")


# Timestamps are compared as strings, so every one must have the same width.
def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def expires_iso(seconds: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Statement builders for the users, auth_tokens and sessions tables.

    Usage:
        store = UserStore()
        UserStore.create_schema(db)
        if db.query(store.sql_user_info(1)):
            row = db.fetch_assoc()
    """

    def __init__(self, bind_ip: bool = False) -> None:
        self.bind_ip = bind_ip

    @staticmethod
    def create_schema(db: Database) -> None:
        """Create the auth tables if they do not exist."""
        _metadata.create_all(db.engine)

    # ------------------------------------------------------------------
    # Login / info
    # ------------------------------------------------------------------

    def sql_login(self, data: dict) -> Executable | None:
        # The password is verified in Python (bcrypt), so select by name only.
        return select(users).where(users.c.username == data["username"])

    def sql_user_info(self, user_id: int) -> Executable | None:
        return select(*PUBLIC_COLUMNS).where(users.c.user_id == user_id)

    def sql_touch_login(self, user_id: int) -> Executable | None:
        return update(users).where(users.c.user_id == user_id).values(last_login=now_iso())

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def sql_get_user_list(self, params: dict) -> Executable | None:
        """Supported params: active, role, limit, offset."""
        stmt = select(*PUBLIC_COLUMNS).order_by(users.c.user_id)
        if params.get("active") is not None:
            stmt = stmt.where(users.c.active == int(params["active"]))
        if params.get("role"):
            stmt = stmt.where(users.c.role == params["role"])
        if params.get("limit"):
            stmt = stmt.limit(int(params["limit"]))
        if params.get("offset"):
            stmt = stmt.offset(int(params["offset"]))
        return stmt

    def sql_user_add(self, params: dict) -> Executable | None:
        values = {k: params[k] for k in _WRITABLE if params.get(k) is not None}
        if not all(values.get(k) for k in ("username", "passwd", "email", "regdate")):
            return None
        return insert(users).values(**values)

    def sql_user_update(self, params: dict) -> Executable | None:
        values = {k: params[k] for k in _WRITABLE if k in params and params[k] is not None}
        if not params.get("user_id") or not values:
            return None
        return update(users).where(users.c.user_id == int(params["user_id"])).values(**values)

    def sql_user_delete(self, params: dict) -> Executable | None:
        if not params.get("user_id"):
            return None
        return delete(users).where(users.c.user_id == int(params["user_id"]))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def sql_username_exists(self, username: str) -> Executable | None:
        return select(users.c.user_id).where(users.c.username == username)

    def sql_email_exists(self, email: str) -> Executable | None:
        return select(users.c.user_id).where(users.c.email == email)

    def sql_register(self, data: dict) -> Executable | None:
        return insert(users).values(
            username=data["username"],
            passwd=data["passwd"],
            email=data["email"],
            regdate=data["regdate"],
            active=1,
            role=data.get("role") or "member",
        )

    # ------------------------------------------------------------------
    # Password recovery
    # ------------------------------------------------------------------

    def sql_recovery(self, data: dict) -> Executable | None:
        """Find the account to recover, by email or by username."""
        if data.get("email"):
            return select(*PUBLIC_COLUMNS).where(users.c.email == data["email"])
        if data.get("username"):
            return select(*PUBLIC_COLUMNS).where(users.c.username == data["username"])
        return None

    def sql_set_recovery(self, user_id: int, token_hash: str, expires: str) -> Executable | None:
        return (
            update(users)
            .where(users.c.user_id == user_id)
            .values(recovery_hash=token_hash, recovery_expires=expires)
        )

    def sql_find_recovery(self, token_hash: str) -> Executable | None:
        return select(*PUBLIC_COLUMNS).where(
            users.c.recovery_hash == token_hash,
            users.c.recovery_expires > now_iso(),
        )

    def sql_set_password(self, user_id: int, passwd_hash: str) -> Executable | None:
        """Store a new password hash and burn any pending recovery token."""
        return (
            update(users)
            .where(users.c.user_id == user_id)
            .values(passwd=passwd_hash, recovery_hash=None, recovery_expires=None)
        )

    # ------------------------------------------------------------------
    # Persistent login
    # ------------------------------------------------------------------

    def sql_remember(self, user_id: int, data: dict) -> Executable | None:
        """data: cookie_hash, ip_addr, headers, expire (seconds)."""
        return insert(auth_tokens).values(
            user_id=user_id,
            cookie_hash=data["cookie_hash"],
            ip_addr=data.get("ip_addr") or "",
            headers=data["headers"],
            created_at=now_iso(),
            expires_at=expires_iso(int(data["expire"])),
        )

    def sql_auth(self, data: dict) -> Executable | None:
        """Match an unexpired persistent login of an active user for this cookie and client."""
        stmt = (
            select(auth_tokens.c.user_id)
            .select_from(auth_tokens.join(users, users.c.user_id == auth_tokens.c.user_id))
            .where(
                auth_tokens.c.cookie_hash == data["cookie_hash"],
                auth_tokens.c.expires_at > now_iso(),
                auth_tokens.c.headers == data["headers"],
                users.c.active == 1,
            )
        )
        if self.bind_ip:
            stmt = stmt.where(auth_tokens.c.ip_addr == (data.get("ip_addr") or ""))
        return stmt

    def sql_logout(self, data: dict) -> Executable | None:
        if not data.get("cookie_hash"):
            return None
        return delete(auth_tokens).where(auth_tokens.c.cookie_hash == data["cookie_hash"])

    def sql_forget_user(self, user_id: int) -> Executable | None:
        """Drop every persistent login of a user (password change, deactivation, deletion)."""
        return delete(auth_tokens).where(auth_tokens.c.user_id == user_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def sql_open_session(self, user_id: int, sid_hash: str, expire: int) -> Executable | None:
        return insert(sessions).values(
            sid_hash=sid_hash,
            user_id=user_id,
            created_at=now_iso(),
            expires_at=expires_iso(expire),
        )

    def sql_session(self, sid_hash: str) -> Executable | None:
        """Match an unexpired session of an active user."""
        return (
            select(sessions.c.user_id)
            .select_from(sessions.join(users, users.c.user_id == sessions.c.user_id))
            .where(
                sessions.c.sid_hash == sid_hash,
                sessions.c.expires_at > now_iso(),
                users.c.active == 1,
            )
        )

    def sql_close_session(self, sid_hash: str) -> Executable | None:
        return delete(sessions).where(sessions.c.sid_hash == sid_hash)

    def sql_forget_sessions(self, user_id: int) -> Executable | None:
        return delete(sessions).where(sessions.c.user_id == user_id)

    def sql_purge_sessions(self) -> Executable | None:
        return delete(sessions).where(sessions.c.expires_at <= now_iso())
