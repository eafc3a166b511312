from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from vexillum.logging import get_logger, redact_email
from vexillum.service.errors import BadRequestError, UnauthorizedError
from vexillum.storage.models import MagicLink

logger = get_logger(__name__)

DEFAULT_MAGIC_LINK_TTL = timedelta(hours=24)

# (email, token) -> truthy on successful hand-off
MagicLinkDispatcher = Callable[[str, str], Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MagicLinkIssuer:
    """Single-use, time-bounded login links.

    ``request`` always behaves the same whether or not the email belongs to
    a principal. ``redeem`` consumes the link through the store's
    conditional delete, so concurrent redemptions of one token yield at most
    one principal id.
    """

    def __init__(
        self,
        store,
        *,
        ttl: timedelta = DEFAULT_MAGIC_LINK_TTL,
        dispatcher: Optional[MagicLinkDispatcher] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self.dispatcher = dispatcher
        self._clock = clock

    def request(self, email: str) -> None:
        user = self.store.find_principal_by_email(email)
        link = MagicLink.new(user.id if user else None, self.ttl, now=self._clock())
        self.store.insert_magic_link(link)
        logger.info(
            "magic_link_issued",
            link_id=str(link.id),
            known_principal=user is not None,
        )
        # Unknown emails get an inert record and no mail.
        if user is None or self.dispatcher is None:
            return
        delivered = self.dispatcher(email, str(link.token))
        if delivered is False:
            logger.warning(
                "magic_link_dispatch_failed",
                link_id=str(link.id),
                recipient=redact_email(email),
            )

    def redeem(self, token: str) -> uuid.UUID:
        try:
            token_uuid = uuid.UUID(str(token))
        except (ValueError, AttributeError, TypeError) as exc:
            raise BadRequestError("Invalid token format") from exc

        link = self.store.find_magic_link_by_token(token_uuid)
        if link is None:
            raise UnauthorizedError("Invalid or expired magic link")

        if link.is_expired(self._clock()):
            self.store.delete_magic_link_by_id(link.id)
            logger.info("magic_link_expired", link_id=str(link.id))
            raise UnauthorizedError("Magic link has expired")

        if link.user_id is None:
            self.store.delete_magic_link_by_id(link.id)
            raise UnauthorizedError("Magic link not associated with user")

        if not self.store.delete_magic_link_by_id(link.id):
            logger.info("magic_link_redeem_race_lost", link_id=str(link.id))
            raise UnauthorizedError("Invalid or expired magic link")

        logger.info("magic_link_redeemed", link_id=str(link.id), user_id=str(link.user_id))
        return link.user_id
