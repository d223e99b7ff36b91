"""validators/base.py -- Option handling shared by the configurable validators."""

from __future__ import annotations


class Validator:
    """Base class for validators that carry an options dict.

    Subclasses declare their defaults in ``defaults``; constructor options
    and later set_options() calls are merged over them.
    """

    defaults: dict = {}

    def __init__(self, options: dict | None = None) -> None:
        self.options = dict(self.defaults)
        self.set_options(options or {})

    def set_options(self, options: dict) -> "Validator":
        self.options.update(options)
        return self

    def is_valid(self, value, *args, **kwargs) -> bool:
        raise NotImplementedError
