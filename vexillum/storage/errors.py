from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """A uniqueness constraint on a stored principal or link was violated.

    ``field`` names the offending column so callers can build a precise
    conflict message without parsing driver errors.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.detail = detail or ({"field": field} if field else {})


__all__ = ["ConstraintViolation"]
