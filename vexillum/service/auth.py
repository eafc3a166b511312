from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from vexillum.logging import get_logger, redact_email
from vexillum.service.errors import ConflictError, NotFoundError, UnauthorizedError
from vexillum.service.magic_links import MagicLinkIssuer
from vexillum.service.passwords import CredentialVerifier
from vexillum.service.principal import Principal
from vexillum.service.tokens import TokenClass, TokenService
from vexillum.storage.errors import ConstraintViolation
from vexillum.storage.models import MagicLink, User, UserRole, normalize_email

logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


class AuthStore(Protocol):
    def find_principal_by_email(self, email: str) -> Optional[User]: ...

    def get_principal(self, user_id: uuid.UUID) -> Optional[User]: ...

    def insert_principal(self, user: User) -> User: ...

    def update_principal_role(self, user_id: uuid.UUID, role: UserRole) -> Optional[User]: ...

    def insert_magic_link(self, link: MagicLink) -> MagicLink: ...

    def find_magic_link_by_token(self, token: uuid.UUID) -> Optional[MagicLink]: ...

    def delete_magic_link_by_id(self, link_id: uuid.UUID) -> bool: ...


@dataclass
class IssuedTokens:
    user_id: uuid.UUID
    access_token: str
    access_ttl_seconds: int
    refresh_token: Optional[str] = None
    refresh_ttl_seconds: Optional[int] = None


class AuthService:
    """Login, registration, magic-link and refresh flows on top of the token core."""

    def __init__(
        self,
        store: AuthStore,
        tokens: TokenService,
        passwords: CredentialVerifier,
        magic_links: MagicLinkIssuer,
    ) -> None:
        self.store: AuthStore = store
        self.tokens = tokens
        self.passwords = passwords
        self.magic_links = magic_links

    def _issue_pair(self, user_id: uuid.UUID, refresh_class: TokenClass) -> IssuedTokens:
        access_ttl = self.tokens.ttl_for(TokenClass.ACCESS)
        refresh_ttl = self.tokens.ttl_for(refresh_class)
        return IssuedTokens(
            user_id=user_id,
            access_token=self.tokens.issue(user_id, access_ttl),
            access_ttl_seconds=access_ttl,
            refresh_token=self.tokens.issue(user_id, refresh_ttl),
            refresh_ttl_seconds=refresh_ttl,
        )

    async def login(
        self, email: str, password: str, *, remember_me: bool = False
    ) -> IssuedTokens:
        user = self.store.find_principal_by_email(email)
        if user is None:
            # unknown emails pay the same argon2 cost as known ones
            await self.passwords.burn_async(password)
            logger.info("login_failed", reason="unknown_email", email=redact_email(email))
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not await self.passwords.verify_async(password, user.password_hash):
            logger.info("login_failed", reason="bad_password", user_id=str(user.id))
            raise UnauthorizedError(INVALID_CREDENTIALS)

        refresh_class = TokenClass.LONG if remember_me else TokenClass.REFRESH
        issued = self._issue_pair(user.id, refresh_class)
        logger.info("login_succeeded", user_id=str(user.id), remember_me=remember_me)
        return issued

    async def register(self, email: str, password: str) -> IssuedTokens:
        if self.store.find_principal_by_email(email) is not None:
            raise ConflictError("User already exists")
        password_hash = await self.passwords.hash_async(password)
        user = User.new(email, password_hash, role=UserRole.VIEWER)
        try:
            self.store.insert_principal(user)
        except ConstraintViolation as exc:
            # lost a race with a concurrent registration for the same email
            raise ConflictError("User already exists") from exc
        logger.info("user_registered", user_id=str(user.id))
        return self._issue_pair(user.id, TokenClass.REFRESH)

    async def request_magic_link(self, email: str) -> None:
        await asyncio.to_thread(self.magic_links.request, email)

    async def verify_magic_link(self, token: str) -> IssuedTokens:
        user_id = self.magic_links.redeem(token)
        return self._issue_pair(user_id, TokenClass.REFRESH)

    def refresh(self, principal: Principal) -> IssuedTokens:
        """New access token from a validated refresh principal; the refresh token is not rotated."""
        access_ttl = self.tokens.ttl_for(TokenClass.ACCESS)
        return IssuedTokens(
            user_id=principal.user_id,
            access_token=self.tokens.issue(principal.user_id, access_ttl),
            access_ttl_seconds=access_ttl,
        )

    def current_user(self, principal: Principal) -> User:
        user = self.store.get_principal(principal.user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def ensure_admin(
        self, email: str, password: str, *, promote_existing: bool = False
    ) -> Tuple[User, str]:
        """Create the bootstrap admin if missing.

        Returns the principal and one of ``created``, ``promoted``,
        ``already_admin`` or ``exists``.
        """
        email = normalize_email(email)
        existing = self.store.find_principal_by_email(email)
        if existing is not None:
            if existing.role == UserRole.ADMIN:
                return existing, "already_admin"
            if not promote_existing:
                logger.info("admin_bootstrap_skipped", user_id=str(existing.id))
                return existing, "exists"
            promoted = self.store.update_principal_role(existing.id, UserRole.ADMIN)
            logger.info("admin_promoted", user_id=str(existing.id))
            return promoted or existing, "promoted"

        password_hash = await self.passwords.hash_async(password)
        user = User.new(email, password_hash, role=UserRole.ADMIN)
        try:
            self.store.insert_principal(user)
        except ConstraintViolation:
            current = self.store.find_principal_by_email(email)
            if current is None:
                raise
            return current, "exists"
        logger.info("admin_created", user_id=str(user.id))
        return user, "created"
