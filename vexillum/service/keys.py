from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from vexillum.logging import get_logger
from vexillum.service.errors import KeyMaterialError

logger = get_logger(__name__)

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


@dataclass(frozen=True)
class KeyPair:
    """PEM-encoded signing key pair, read-only for the process lifetime."""

    private_pem: bytes = field(repr=False)
    public_pem: bytes


class KeyManager:
    """Loads the RSA signing key pair from disk, generating it on first boot.

    Both halves are written before the pair is handed out, so a restart
    against the same directory always reuses the same material. A directory
    holding only one half is treated as empty and regenerated.
    """

    def __init__(self, private_key_path: Path | str, public_key_path: Path | str) -> None:
        self.private_key_path = Path(private_key_path)
        self.public_key_path = Path(public_key_path)

    def load_or_generate(self) -> Tuple[bytes, bytes]:
        if self.private_key_path.exists() and self.public_key_path.exists():
            logger.info(
                "signing_keys_loading",
                private_path=str(self.private_key_path),
                public_path=str(self.public_key_path),
            )
            try:
                return self.private_key_path.read_bytes(), self.public_key_path.read_bytes()
            except OSError as exc:
                logger.error("signing_keys_read_failed", error=str(exc))
                raise KeyMaterialError(f"Failed to read key material: {exc}") from exc

        logger.info("signing_keys_generating", key_size=RSA_KEY_SIZE)
        private_pem, public_pem = self._generate()
        self._persist(private_pem, public_pem)
        logger.info(
            "signing_keys_generated",
            private_path=str(self.private_key_path),
            public_path=str(self.public_key_path),
        )
        return private_pem, public_pem

    def load_key_pair(self) -> KeyPair:
        private_pem, public_pem = self.load_or_generate()
        return KeyPair(private_pem=private_pem, public_pem=public_pem)

    @staticmethod
    def _generate() -> Tuple[bytes, bytes]:
        try:
            private_key = rsa.generate_private_key(
                public_exponent=RSA_PUBLIC_EXPONENT, key_size=RSA_KEY_SIZE
            )
            private_pem = private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption(),
            )
            public_pem = private_key.public_key().public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        except Exception as exc:
            logger.error("signing_keys_generation_failed", error=str(exc))
            raise KeyMaterialError(f"Failed to generate key pair: {exc}") from exc
        return private_pem, public_pem

    def _persist(self, private_pem: bytes, public_pem: bytes) -> None:
        try:
            for directory in {self.private_key_path.parent, self.public_key_path.parent}:
                directory.mkdir(parents=True, exist_ok=True)
            _atomic_write(self.private_key_path, private_pem, mode=0o600)
            _atomic_write(self.public_key_path, public_pem, mode=0o644)
        except OSError as exc:
            logger.error(
                "signing_keys_persist_failed",
                error=str(exc),
                path=str(self.private_key_path.parent),
            )
            raise KeyMaterialError(f"Failed to persist key material: {exc}") from exc


def _atomic_write(path: Path, data: bytes, *, mode: int) -> None:
    """Write to a temp file in the target directory, then rename over ``path``."""
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}_", suffix=".tmp")
    try:
        try:
            os.write(fd, data)
            os.fchmod(fd, mode)
        finally:
            os.close(fd)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
