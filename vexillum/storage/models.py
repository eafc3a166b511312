from __future__ import annotations

import unicodedata
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_INVISIBLE_CHARS = frozenset(
    "\u200b\u200c\u200d\ufeff"
    + "".join(chr(c) for c in range(0x202A, 0x202F))
    + "".join(chr(c) for c in range(0x2066, 0x206A))
)


def normalize_email(value: str) -> str:
    """Canonical stored form of a login email.

    Strips surrounding whitespace and zero-width or bidi override characters,
    then NFKC-normalizes. Case is preserved: emails match as stored.
    """
    cleaned = "".join(c for c in value.strip() if c not in _INVISIBLE_CHARS)
    return unicodedata.normalize("NFKC", cleaned)


class UserRole(str, Enum):
    """Roles attached to a principal; authorization happens elsewhere."""

    ADMIN = "admin"
    USER = "user"
    VIEWER = "viewer"


@dataclass
class User:
    id: uuid.UUID
    email: str
    password_hash: str = field(repr=False)
    role: UserRole = UserRole.VIEWER
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(
        cls, email: str, password_hash: str, role: UserRole = UserRole.VIEWER
    ) -> "User":
        now = _utcnow()
        return cls(
            id=uuid.uuid4(),
            email=email,
            password_hash=password_hash,
            role=role,
            created_at=now,
            updated_at=now,
        )

    def public_dict(self) -> Dict[str, Any]:
        """Outward representation; the password hash never leaves the service."""
        return {
            "id": str(self.id),
            "email": self.email,
            "role": self.role.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class MagicLink:
    id: uuid.UUID
    token: uuid.UUID
    expires_at: datetime
    user_id: Optional[uuid.UUID] = None
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(
        cls,
        user_id: Optional[uuid.UUID],
        ttl: timedelta,
        *,
        now: Optional[datetime] = None,
    ) -> "MagicLink":
        created = now or _utcnow()
        return cls(
            id=uuid.uuid4(),
            token=uuid.uuid4(),
            user_id=user_id,
            expires_at=created + ttl,
            created_at=created,
        )

    def is_expired(self, now: datetime) -> bool:
        """A link is usable only while ``now`` is strictly before ``expires_at``."""
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at
