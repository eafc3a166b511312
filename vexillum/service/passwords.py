from __future__ import annotations

import asyncio

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from vexillum.logging import get_logger
from vexillum.service.errors import InternalError

logger = get_logger(__name__)


class CredentialVerifier:
    """Argon2id password hashing.

    Encoded hashes carry their own parameters and salt, so ``verify`` needs
    nothing beyond the stored string.
    """

    algorithm = "argon2id"

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._hasher = hasher or PasswordHasher(type=Type.ID)
        self._dummy_hash: str | None = None

    @property
    def dummy_hash(self) -> str:
        """Hash of a fixed secret with the live parameters, for unknown-account checks."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("vexillum-unknown-account")
        return self._dummy_hash

    def hash(self, password: str) -> str:
        try:
            return self._hasher.hash(password)
        except Exception as exc:
            logger.error("password_hash_failed", error_type=type(exc).__name__)
            raise InternalError("Failed to process password") from exc

    def verify(self, password: str, hash_string: str) -> bool:
        """Return whether ``password`` matches; a corrupt hash is an error, not a mismatch."""
        try:
            return self._hasher.verify(hash_string, password)
        except VerifyMismatchError:
            return False
        except InvalidHashError as exc:
            logger.error("password_hash_unparsable")
            raise InternalError("Failed to process password") from exc
        except VerificationError:
            return False

    async def hash_async(self, password: str) -> str:
        return await asyncio.to_thread(self.hash, password)

    async def verify_async(self, password: str, hash_string: str) -> bool:
        return await asyncio.to_thread(self.verify, password, hash_string)

    async def burn_async(self, password: str) -> None:
        """Run a verification against ``dummy_hash`` and discard the result."""
        await asyncio.to_thread(self.verify, password, self.dummy_hash)
