"""Unit tests for auth/users.py -- login check, registration, administration
and two-stage password recovery against a real SQLite database."""

from __future__ import annotations

import re

import pytest
from sqlalchemy import func, insert, select, text

from auth.models import User
from auth.store import UserStore, auth_tokens, sessions
from auth.store import users as users_table
from auth.tokens import build_legacy_passwd, fingerprint, hash_token
from auth.users import Users
from core.config import Settings
from core.errors import ErrorCode, InvalidArgumentError, UserRuntimeError
from db.database import Database
from security.vault import Vault

STRONG = "Secret123"


def _row(db: Database, username: str) -> dict | None:
    db.query(select(users_table).where(users_table.c.username == username))
    return db.fetch_assoc()


def _token_count(db: Database, user_id: int) -> int:
    db.query(select(func.count()).select_from(auth_tokens).where(auth_tokens.c.user_id == user_id))
    return db.result()


def _remember(db: Database, store: UserStore, user_id: int, raw: str = "cookie") -> None:
    stmt = store.sql_remember(
        user_id, {"cookie_hash": hash_token(raw), "ip_addr": "", "headers": fingerprint("ua"), "expire": 60}
    )
    assert db.query(stmt)


def _open_session(db: Database, store: UserStore, user_id: int, raw: str = "sid") -> None:
    assert db.query(store.sql_open_session(user_id, hash_token(raw), 60))


def _session_count(db: Database, user_id: int) -> int:
    db.query(select(func.count()).select_from(sessions).where(sessions.c.user_id == user_id))
    return db.result()


def _register(users: Users, username: str = "brian", passwd: str = STRONG, email: str | None = None) -> bool:
    return users.do_register({"username": username, "passwd": passwd, "email": email or f"{username}@mail.com"})


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_success(self, users: Users, db: Database) -> None:
        assert _register(users)
        assert users.get_errors() == []
        row = _row(db, "brian")
        assert row["passwd"].startswith("$2")
        assert row["active"] == 1
        assert row["role"] == "member"
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}", row["regdate"])

    def test_all_fields_empty(self, users: Users) -> None:
        assert not users.do_register({})
        assert users.get_errors() == [20, 25, 27]

    def test_username_and_email_taken(self, users: Users, db: Database, store: UserStore, vault: Vault) -> None:
        assert _register(users)
        again = Users(db, store, vault)
        assert not _register(again, "brian", email="brian@mail.com")
        assert again.get_errors() == [ErrorCode.USERNAME_EXISTS, ErrorCode.EMAIL_EXISTS]

    def test_weak_password(self, users: Users) -> None:
        assert not _register(users, passwd="password")
        assert users.get_errors() == [26]

    def test_password_over_bcrypt_limit(self, users: Users) -> None:
        assert not _register(users, passwd="Aa1" + "x" * 70)
        assert users.get_errors() == [26]

    def test_invalid_email(self, users: Users) -> None:
        assert not _register(users, email="brian@")
        assert users.get_errors() == [28]

    def test_username_is_stripped(self, users: Users, db: Database) -> None:
        assert _register(users, username="  brian  ", email="b@mail.com")
        assert _row(db, "brian") is not None

    def test_query_failure(self, users: Users, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(users.store, "sql_register", lambda data: text("INSERT INTO missing VALUES (1)"))
        assert not _register(users)
        assert users.get_errors() == [102]

    def test_policy_from_settings(self, db: Database, store: UserStore, vault: Vault) -> None:
        lax = Settings(debug=True, password_require_ucase=False, password_min_length=4)
        assert _register(Users(db, store, vault, lax), passwd="abc1")


# ---------------------------------------------------------------------------
# Login check
# ---------------------------------------------------------------------------


class TestCheckLogin:
    def test_success(self, users: Users, create_account, db: Database) -> None:
        uid = create_account(users, "brian")
        assert users.check_login({"username": "brian", "passwd": STRONG}) == uid
        assert users.get("username") == "brian"
        assert "passwd" not in users.userinfo
        assert _row(db, "brian")["last_login"]

    def test_empty_fields(self, users: Users) -> None:
        assert users.check_login({}) is None
        assert users.get_errors() == [1, 5]

    def test_unknown_user(self, users: Users) -> None:
        assert users.check_login({"username": "ghost", "passwd": STRONG}) is None
        assert users.get_errors() == [100]

    def test_wrong_password(self, users: Users, create_account) -> None:
        create_account(users, "brian")
        assert users.check_login({"username": "brian", "passwd": "Wrong1234"}) is None
        assert users.get_errors() == [100]

    def test_inactive(self, users: Users, create_account) -> None:
        create_account(users, "brian", active=0)
        assert users.check_login({"username": "brian", "passwd": STRONG}) is None
        assert users.get_errors() == [15]

    def test_query_failure(self, users: Users, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(users.store, "sql_login", lambda data: text("SELECT * FROM missing"))
        assert users.check_login({"username": "brian", "passwd": STRONG}) is None
        assert users.get_errors() == [103]

    def test_legacy_hash_is_upgraded(self, users: Users, db: Database, vault: Vault) -> None:
        regdate = "2010-01-01 00:00:00"
        legacy = build_legacy_passwd(vault, regdate, STRONG)
        assert db.query(
            insert(users_table).values(username="old", passwd=legacy, email="old@mail.com", regdate=regdate)
        )
        assert users.check_login({"username": "old", "passwd": "wrong"}) is None
        assert users.check_login({"username": "old", "passwd": STRONG}) is not None
        assert _row(db, "old")["passwd"].startswith("$2")
        # still works after the upgrade
        assert users.check_login({"username": "old", "passwd": STRONG}) is not None


# ---------------------------------------------------------------------------
# User info and administration
# ---------------------------------------------------------------------------


class TestUserInfo:
    def test_known_user(self, users: Users, create_account) -> None:
        uid = create_account(users, "brian")
        info = users.get_user_info(uid)
        assert info["username"] == "brian"
        assert "passwd" not in info
        assert users.get("user_id") == uid

    def test_unknown_user(self, users: Users) -> None:
        assert users.get_user_info(999) is None
        assert users.get_errors() == [200]

    def test_zero_without_current_user(self, users: Users) -> None:
        assert users.get_user_info() is None
        assert users.get_errors() == []

    def test_zero_reloads_current_user(self, users: Users, create_account) -> None:
        uid = create_account(users, "brian")
        users.set_user_info({"user_id": uid})
        assert users.get_user_info()["username"] == "brian"

    def test_lookup_keeps_current_user(self, users: Users, create_account) -> None:
        admin = create_account(users, "root", role="admin")
        other = create_account(users, "ann")
        users.get_user_info(admin)
        assert users.lookup_user(other)["username"] == "ann"
        assert users.get("user_id") == admin
        assert users.get("role") == "admin"

    def test_lookup_unknown_user(self, users: Users) -> None:
        assert users.lookup_user(999) is None
        assert users.get_errors() == [200]

    def test_get_treats_empty_as_missing(self, users: Users) -> None:
        users.set_user_info({"last_login": "", "role": "member"})
        assert users.get("last_login") is None
        assert users.get("role") == "member"


class TestUserList:
    def test_requires_prototype(self, users: Users) -> None:
        with pytest.raises(UserRuntimeError):
            users.get_user_list()

    def test_params_must_be_dict(self, users: Users) -> None:
        users.set_user_prototype(User())
        with pytest.raises(InvalidArgumentError):
            users.get_user_list(["role"])

    def test_returns_prototype_copies(self, users: Users, create_account) -> None:
        create_account(users, "ann")
        create_account(users, "bob", role="admin")
        proto = User()
        users.set_user_prototype(proto)
        result = users.get_user_list()
        assert [u["username"] for u in result] == ["ann", "bob"]
        assert all(u is not proto for u in result)
        assert result[0] is not result[1]
        assert proto.info == {}

    def test_filters(self, users: Users, create_account) -> None:
        create_account(users, "ann")
        create_account(users, "bob", role="admin")
        create_account(users, "cid", active=0)
        users.set_user_prototype(User())
        assert [u["username"] for u in users.get_user_list({"role": "admin"})] == ["bob"]
        assert [u["username"] for u in users.get_user_list({"active": False})] == ["cid"]
        assert [u["username"] for u in users.get_user_list({"limit": 1, "offset": 1})] == ["bob"]

    def test_subclassed_prototype(self, users: Users, create_account) -> None:
        class Member(User):
            def label(self) -> str:
                return self["username"].upper()

        create_account(users, "ann")
        users.set_user_prototype(Member())
        assert users.get_user_list()[0].label() == "ANN"


class TestUserWrites:
    def test_add_hashes_password(self, users: Users, create_account, db: Database) -> None:
        create_account(users, "ann")
        row = _row(db, "ann")
        assert row["passwd"].startswith("$2")
        assert row["regdate"]

    def test_add_missing_fields(self, users: Users) -> None:
        assert not users.user_add({"username": "ann"})
        assert users.get_errors() == []

    def test_add_duplicate(self, users: Users, create_account) -> None:
        create_account(users, "ann")
        assert not users.user_add({"username": "ann", "passwd": STRONG, "email": "other@mail.com"})
        assert users.get_errors() == [220]

    def test_add_rejects_non_dict(self, users: Users) -> None:
        with pytest.raises(InvalidArgumentError):
            users.user_add("ann")

    def test_update(self, users: Users, create_account, db: Database) -> None:
        uid = create_account(users, "ann")
        assert users.user_update({"user_id": uid, "role": "admin", "passwd": "Newpass99"})
        row = _row(db, "ann")
        assert row["role"] == "admin"
        assert users.check_login({"username": "ann", "passwd": "Newpass99"}) == uid

    def test_update_without_changes(self, users: Users, create_account) -> None:
        uid = create_account(users, "ann")
        assert not users.user_update({"user_id": uid})
        assert not users.user_update({"role": "admin"})

    def test_update_conflict(self, users: Users, create_account) -> None:
        create_account(users, "ann")
        uid = create_account(users, "bob")
        assert not users.user_update({"user_id": uid, "email": "ann@mail.com"})
        assert users.get_errors() == [230]

    def test_delete_forgets_persistent_logins(
        self, users: Users, create_account, db: Database, store: UserStore
    ) -> None:
        uid = create_account(users, "ann")
        _remember(db, store, uid)
        assert users.user_delete({"user_id": uid})
        assert _row(db, "ann") is None
        assert _token_count(db, uid) == 0

    def test_password_change_forgets_logins(
        self, users: Users, create_account, db: Database, store: UserStore
    ) -> None:
        uid = create_account(users, "ann")
        _remember(db, store, uid)
        _open_session(db, store, uid)
        assert users.user_update({"user_id": uid, "passwd": "Newpass99"})
        assert _token_count(db, uid) == 0
        assert _session_count(db, uid) == 0

    def test_deactivation_forgets_logins(
        self, users: Users, create_account, db: Database, store: UserStore
    ) -> None:
        uid = create_account(users, "ann")
        _remember(db, store, uid)
        _open_session(db, store, uid)
        assert users.user_update({"user_id": uid, "active": 0})
        assert _token_count(db, uid) == 0
        assert _session_count(db, uid) == 0

    def test_role_change_keeps_logins(self, users: Users, create_account, db: Database, store: UserStore) -> None:
        uid = create_account(users, "ann")
        _remember(db, store, uid)
        assert users.user_update({"user_id": uid, "role": "admin", "active": 1})
        assert _token_count(db, uid) == 1

    def test_delete_without_id(self, users: Users) -> None:
        assert not users.user_delete({})


# ---------------------------------------------------------------------------
# Password recovery
# ---------------------------------------------------------------------------


class TestRecovery:
    def test_full_flow(self, users: Users, create_account, db: Database, store: UserStore) -> None:
        uid = create_account(users, "ann")
        _remember(db, store, uid)

        result = users.recover_password({"email": "ann@mail.com"})
        assert result is not None
        info, token = result
        assert info["user_id"] == uid
        assert _row(db, "ann")["recovery_hash"] == hash_token(token)

        assert users.reset_password({"token": token, "passwd": "Changed42"})
        assert users.check_login({"username": "ann", "passwd": "Changed42"}) == uid
        assert _row(db, "ann")["recovery_hash"] is None
        assert _token_count(db, uid) == 0

    def test_by_username(self, users: Users, create_account) -> None:
        create_account(users, "ann")
        assert users.recover_password({"username": "ann"}) is not None

    def test_token_is_single_use(self, users: Users, create_account) -> None:
        create_account(users, "ann")
        _, token = users.recover_password({"username": "ann"})
        assert users.reset_password({"token": token, "passwd": "Changed42"})
        assert not users.reset_password({"token": token, "passwd": "Again4242"})
        assert users.get_errors() == [161]

    def test_missing_identifier(self, users: Users) -> None:
        assert users.recover_password({}) is None
        assert users.get_errors() == [160]

    def test_unknown_account(self, users: Users) -> None:
        assert users.recover_password({"email": "ghost@mail.com"}) is None
        assert users.get_errors() == [161]

    def test_inactive_account(self, users: Users, create_account) -> None:
        create_account(users, "ann", active=0)
        assert users.recover_password({"username": "ann"}) is None
        assert users.get_errors() == [161]

    def test_reset_missing_data(self, users: Users) -> None:
        assert not users.reset_password({"token": "abc"})
        assert users.get_errors() == [160]

    def test_reset_weak_password(self, users: Users, create_account) -> None:
        create_account(users, "ann")
        _, token = users.recover_password({"username": "ann"})
        assert not users.reset_password({"token": token, "passwd": "weak"})
        assert users.get_errors() == [26]

    def test_reset_unknown_token(self, users: Users) -> None:
        assert not users.reset_password({"token": "not-a-token", "passwd": "Changed42"})
        assert users.get_errors() == [161]

    def test_expired_token(self, db: Database, store: UserStore, vault: Vault, create_account) -> None:
        expired = Users(db, store, vault, Settings(debug=True, recovery_expire_seconds=-60))
        create_account(expired, "ann")
        _, token = expired.recover_password({"username": "ann"})
        assert not expired.reset_password({"token": token, "passwd": "Changed42"})
        assert expired.get_errors() == [161]


def test_close_sends_debug_report(users: Users, _isolate) -> None:
    users.check_login({})
    users.close({"url": "http://testserver/"})
    assert _isolate.called
