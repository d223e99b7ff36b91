"""
auth/models.py -- Dataclasses passed between the auth layer and its callers.

Pattern: Data class (pure data container, almost no logic). Users and
Authentication do the work; these only carry shape.

Layer rule: no imports from api/, db/ or security/.
"""

from __future__ import annotations

import copy
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any


@dataclass
class User:
    """Prototype for entries returned by Users.get_user_list().

    The list operation copies the prototype once per row and calls
    set_info() on the copy, so subclasses can add behaviour (display names,
    permission helpers) without touching the query code.
    """

    info: dict = field(default_factory=dict)

    def set_info(self, info: dict) -> None:
        self.info = dict(info)

    def get(self, name: str, default: Any = None) -> Any:
        return self.info.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self.info[name]

    def clone(self) -> "User":
        return copy.deepcopy(self)


@dataclass
class RequestContext:
    """Everything Authentication needs from the incoming request.

    session is mutated in place (Starlette's request.session in the app, a
    plain dict in tests). cookies/headers are read-only views.
    """

    session: MutableMapping = field(default_factory=dict)
    cookies: dict = field(default_factory=dict)
    ip_addr: str = ""
    user_agent: str = ""
    url: str = ""
    headers: dict = field(default_factory=dict)


@dataclass
class CookieOp:
    """One pending Set-Cookie. value=None means delete the cookie."""

    name: str
    value: str | None
    max_age: int = 0
    path: str = "/"
    domain: str | None = None
    secure: bool = False
    httponly: bool = True
