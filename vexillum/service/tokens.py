from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Union

import jwt
from cryptography.hazmat.primitives import serialization

from vexillum.logging import get_logger
from vexillum.service.errors import InternalError, UnauthorizedError
from vexillum.service.keys import KeyPair

logger = get_logger(__name__)

SIGNING_ALGORITHM = "RS256"
LONG_REFRESH_MULTIPLIER = 7


class TokenClass(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    LONG = "long"


@dataclass(frozen=True)
class Claims:
    sub: str
    iat: int
    exp: int

    def as_dict(self) -> Dict[str, Any]:
        return {"sub": self.sub, "iat": self.iat, "exp": self.exp}


class TokenService:
    """Issues and validates RS256-signed tokens.

    Validation needs only the public key, so any service holding the PEM
    from ``/keys`` can verify tokens without calling back here. Nothing is
    stored: a token is valid while its signature checks out and ``exp`` has
    not passed.
    """

    def __init__(
        self,
        key_pair: KeyPair,
        *,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        leeway_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        try:
            self._private_key = serialization.load_pem_private_key(
                key_pair.private_pem, password=None
            )
        except (ValueError, TypeError) as exc:
            logger.error("private_key_load_failed", error=str(exc))
            raise InternalError("Failed to load private key") from exc
        try:
            self._public_key = serialization.load_pem_public_key(key_pair.public_pem)
        except (ValueError, TypeError) as exc:
            logger.error("public_key_load_failed", error=str(exc))
            raise InternalError("Failed to load public key") from exc
        self._public_pem = key_pair.public_pem
        self._leeway = leeway_seconds
        self._clock = clock
        self._ttl_policy = {
            TokenClass.ACCESS: access_ttl_seconds,
            TokenClass.REFRESH: refresh_ttl_seconds,
            TokenClass.LONG: refresh_ttl_seconds * LONG_REFRESH_MULTIPLIER,
        }

    @property
    def public_key_pem(self) -> bytes:
        return self._public_pem

    def ttl_for(self, token_class: TokenClass) -> int:
        return self._ttl_policy[TokenClass(token_class)]

    def issue(self, principal_id: Union[uuid.UUID, str], ttl_seconds: int) -> str:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        now = int(self._clock())
        payload = {"sub": str(principal_id), "iat": now, "exp": now + ttl_seconds}
        try:
            return jwt.encode(payload, self._private_key, algorithm=SIGNING_ALGORITHM)
        except Exception as exc:
            logger.error("token_encode_failed", error=str(exc))
            raise InternalError(f"Failed to encode token: {exc}") from exc

    def issue_for(self, principal_id: Union[uuid.UUID, str], token_class: TokenClass) -> str:
        return self.issue(principal_id, self.ttl_for(token_class))

    def validate(self, token: str) -> Claims:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as exc:
            raise UnauthorizedError(f"Invalid token: {exc}") from exc
        if header.get("alg") != SIGNING_ALGORITHM:
            logger.warning("token_invalid_algorithm", alg=header.get("alg"))
            raise UnauthorizedError("Invalid token: unexpected signing algorithm")

        try:
            payload = jwt.decode(
                token,
                self._public_key,
                algorithms=[SIGNING_ALGORITHM],
                options={
                    # exp/iat are checked below against the injected clock
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": ["sub", "iat", "exp"],
                },
            )
        except jwt.InvalidTokenError as exc:
            raise UnauthorizedError(f"Invalid token: {exc}") from exc

        sub, iat, exp = payload.get("sub"), payload.get("iat"), payload.get("exp")
        if not isinstance(sub, str) or not sub:
            raise UnauthorizedError("Invalid token: malformed subject")
        if not _is_epoch(iat) or not _is_epoch(exp):
            raise UnauthorizedError("Invalid token: malformed timestamps")
        if self._clock() >= exp + self._leeway:
            raise UnauthorizedError("Invalid token: token has expired")
        return Claims(sub=sub, iat=iat, exp=exp)


def _is_epoch(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
