"""
core/errors.py -- Numeric error codes and the exception hierarchy.

Two error channels exist side by side:

  ErrorCode -- expected, user-facing failures (empty username, email taken,
      query failed). These are appended to an ``errors`` list on the Users /
      Authentication objects and the operation returns False or None. The API
      layer turns the list into a structured 4xx response.

  SplError subclasses -- programming or configuration mistakes (missing user
      prototype, unsupported database type, vault without a key). These are
      raised and propagate.

The numbers are stable: existing front-ends map them to translated messages.
"""

from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    # Login data
    USERNAME_EMPTY = 1
    PASSWORD_EMPTY = 5
    USER_INACTIVE = 15

    # Register data
    REGISTER_USERNAME_EMPTY = 20
    USERNAME_EXISTS = 21
    REGISTER_PASSWORD_EMPTY = 25
    PASSWORD_TOO_WEAK = 26
    EMAIL_EMPTY = 27
    EMAIL_INVALID = 28
    EMAIL_EXISTS = 29

    # Database
    LOGIN_NOT_FOUND = 100
    REGISTER_QUERY_FAILED = 102
    LOGIN_QUERY_FAILED = 103
    USER_INFO_QUERY_FAILED = 104

    # Password recovery
    RECOVERY_DATA_MISSING = 160
    RECOVERY_FAILED = 161

    # User handling
    USER_INFO_NOT_FOUND = 200
    USER_LIST_FAILED = 210
    USER_ADD_FAILED = 220
    USER_UPDATE_FAILED = 230
    USER_DELETE_FAILED = 240

    # Internal
    INTERNAL_ERROR = 500
    REMEMBER_INSERT_FAILED = 501

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.USERNAME_EMPTY: "Username empty",
    ErrorCode.PASSWORD_EMPTY: "Password empty",
    ErrorCode.USER_INACTIVE: "User inactive",
    ErrorCode.REGISTER_USERNAME_EMPTY: "Username field empty",
    ErrorCode.USERNAME_EXISTS: "Username exists",
    ErrorCode.REGISTER_PASSWORD_EMPTY: "Password field empty",
    ErrorCode.PASSWORD_TOO_WEAK: "Password complexity too low",
    ErrorCode.EMAIL_EMPTY: "Email field empty",
    ErrorCode.EMAIL_INVALID: "Email is invalid",
    ErrorCode.EMAIL_EXISTS: "Email exists",
    ErrorCode.LOGIN_NOT_FOUND: "User with the given login data not found",
    ErrorCode.REGISTER_QUERY_FAILED: "Could not register account because query failed",
    ErrorCode.LOGIN_QUERY_FAILED: "Could not do login because query failed",
    ErrorCode.USER_INFO_QUERY_FAILED: "Could not retrieve the account info for the given account id",
    ErrorCode.RECOVERY_DATA_MISSING: "Data required for password recovery was not found or improper format",
    ErrorCode.RECOVERY_FAILED: "An error occured while trying to recover your password",
    ErrorCode.USER_INFO_NOT_FOUND: "No info found in the database for the given account ID",
    ErrorCode.USER_LIST_FAILED: "The user list could not be retrieved",
    ErrorCode.USER_ADD_FAILED: "The user could not be added",
    ErrorCode.USER_UPDATE_FAILED: "The user could not be updated",
    ErrorCode.USER_DELETE_FAILED: "The user could not be deleted",
    ErrorCode.INTERNAL_ERROR: "Internal class error",
    ErrorCode.REMEMBER_INSERT_FAILED: "Could not insert authentication info into the database",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SplError(Exception):
    """Base class for every exception raised by splkit."""


class InvalidArgumentError(SplError, ValueError):
    """An argument has the wrong type or shape (e.g. params is not a dict)."""


class UserRuntimeError(SplError, RuntimeError):
    """A Users operation was called in a state that cannot work."""


class UnsupportedDatabaseError(SplError):
    """The requested database type has no handler."""

    code = 2


class VaultError(SplError):
    """Encryption or decryption failed, or the vault has no key material."""


class UploadError(SplError, RuntimeError):
    """The uploads directory is missing and cannot be created."""
