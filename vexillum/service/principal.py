from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

from vexillum.logging import get_logger
from vexillum.service.errors import InternalError, UnauthorizedError
from vexillum.service.tokens import Claims, TokenService

logger = get_logger(__name__)

REFRESH_COOKIE_NAME = "refresh_token"


@dataclass(frozen=True)
class Principal:
    """Authenticated identity derived from a validated token."""

    user_id: uuid.UUID
    claims: Claims


class TokenDenylist(Protocol):
    """Optional revocation check consulted after signature validation."""

    def is_revoked(self, claims: Claims) -> bool: ...


class PrincipalResolver:
    """Turns a bearer header or refresh cookie into a ``Principal``.

    No store lookup happens here; a deleted principal still resolves until
    its token expires.
    """

    def __init__(self, tokens: TokenService, *, denylist: Optional[TokenDenylist] = None) -> None:
        self.tokens = tokens
        self.denylist = denylist

    def from_authorization(self, header: Optional[str]) -> Principal:
        token = _parse_bearer(header)
        if token is None:
            raise UnauthorizedError("Missing or invalid authorization header")
        return self._resolve(token)

    def from_cookie(
        self, cookies: Mapping[str, str], name: str = REFRESH_COOKIE_NAME
    ) -> Principal:
        token = cookies.get(name) if cookies else None
        if not token:
            raise UnauthorizedError("Refresh token not found")
        return self._resolve(token)

    def _resolve(self, token: str) -> Principal:
        claims = self.tokens.validate(token)
        if self.denylist is not None and self.denylist.is_revoked(claims):
            raise UnauthorizedError("Invalid token: token has been revoked")
        try:
            user_id = uuid.UUID(claims.sub)
        except ValueError as exc:
            # correctly signed, so the bad subject came from our own issuer
            logger.error("token_subject_not_uuid")
            raise InternalError("Invalid user ID in token") from exc
        return Principal(user_id=user_id, claims=claims)


def _parse_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, credentials = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    credentials = credentials.strip()
    return credentials or None
