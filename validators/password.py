"""
validators/password.py -- Password complexity policy.

Options:
  length -- minimum length of the stripped password; any non-positive or
            non-numeric value (False, 0, None) disables the check
  number -- require at least one digit
  lcase  -- require at least one lowercase ASCII letter
  ucase  -- require at least one uppercase ASCII letter

Each character is counted in one class only, tried in the order digit,
lowercase, uppercase.
"""

from __future__ import annotations

import string

from validators.base import Validator


class PasswordValidator(Validator):
    defaults = {"length": 8, "number": True, "lcase": True, "ucase": True}

    def set_option(self, name: str, value) -> None:
        """Change a single known option. Unknown names are ignored."""
        if name in self.options:
            self.options[name] = value

    @classmethod
    def from_settings(cls, settings) -> "PasswordValidator":
        return cls(
            {
                "length": settings.password_min_length,
                "number": settings.password_require_number,
                "lcase": settings.password_require_lcase,
                "ucase": settings.password_require_ucase,
            }
        )

    def is_valid(self, passwd: str, bypass: bool = False) -> bool:
        if bypass:
            return True

        failed = 0
        length = self.options.get("length")
        if isinstance(length, int) and not isinstance(length, bool) and length > 0:
            if len(passwd.strip()) < length:
                failed += 1

        want_number = bool(self.options.get("number"))
        want_lcase = bool(self.options.get("lcase"))
        want_ucase = bool(self.options.get("ucase"))

        if want_number or want_lcase or want_ucase:
            numbers = lower = upper = 0
            for char in passwd:
                if want_number and char in string.digits:
                    numbers += 1
                elif want_lcase and char in string.ascii_lowercase:
                    lower += 1
                elif want_ucase and char in string.ascii_uppercase:
                    upper += 1

            if want_number and numbers == 0:
                failed += 1
            if want_lcase and lower == 0:
                failed += 1
            if want_ucase and upper == 0:
                failed += 1

        return failed == 0
