from __future__ import annotations

from fastapi import Response

from vexillum.service.principal import REFRESH_COOKIE_NAME

_COOKIE_ATTRS = {
    "path": "/",
    "httponly": True,
    "secure": True,
    "samesite": "strict",
}


def set_refresh_cookie(response: Response, token: str, *, max_age: int) -> None:
    """Place the refresh token where page scripts cannot read it."""
    response.set_cookie(REFRESH_COOKIE_NAME, token, max_age=max_age, **_COOKIE_ATTRS)


def clear_refresh_cookie(response: Response) -> None:
    # same attributes as set_refresh_cookie, or the browser keeps the old one
    response.set_cookie(REFRESH_COOKIE_NAME, "", max_age=0, **_COOKIE_ATTRS)
