from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Optional

from vexillum.logging import get_logger
from vexillum.storage.errors import ConstraintViolation
from vexillum.storage.models import MagicLink, User, UserRole


class MemoryStore:
    """In-process backing store for tests and local development.

    Every operation runs under one re-entrant lock, which gives the same
    per-call atomicity the Postgres store gets from single statements.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[uuid.UUID, User] = {}
        self.magic_links: Dict[uuid.UUID, MagicLink] = {}
        self._data_lock = threading.RLock()

    def find_principal_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == email), None)
            return replace(user) if user else None

    def get_principal(self, user_id: uuid.UUID) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def insert_principal(self, user: User) -> User:
        with self._data_lock:
            if any(existing.email == user.email for existing in self.users.values()):
                self.logger.info("principal_insert_conflict", user_id=str(user.id))
                raise ConstraintViolation("email already exists", field="email")
            if user.id in self.users:
                raise ConstraintViolation("user id already exists", field="id")
            self.users[user.id] = replace(user)
            return user

    def update_principal_role(self, user_id: uuid.UUID, role: UserRole) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.role = role
            user.updated_at = datetime.now(timezone.utc)
            return replace(user)

    def insert_magic_link(self, link: MagicLink) -> MagicLink:
        with self._data_lock:
            if any(existing.token == link.token for existing in self.magic_links.values()):
                raise ConstraintViolation("magic link token already exists", field="token")
            self.magic_links[link.id] = replace(link)
            return link

    def find_magic_link_by_token(self, token: uuid.UUID) -> Optional[MagicLink]:
        with self._data_lock:
            link = next(
                (item for item in self.magic_links.values() if item.token == token), None
            )
            return replace(link) if link else None

    def delete_magic_link_by_id(self, link_id: uuid.UUID) -> bool:
        """Remove a link; True only for the caller that actually removed it."""
        with self._data_lock:
            return self.magic_links.pop(link_id, None) is not None
