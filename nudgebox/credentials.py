"""
Identifier/password store built on top of a DbClient.
"""

from __future__ import annotations

import logging

import bcrypt

from nudgebox.db import DbClient
from nudgebox.errors import NudgeboxError

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72


class CredentialStore:
    """
    Registers identifiers and verifies passwords with salted bcrypt hashes.

    ``verify`` answers False for an unknown identifier and for a wrong password
    alike, and pays for one bcrypt check in both cases.
    """

    def __init__(self, db: DbClient, *, rounds: int = 12):
        self.db = db
        self.rounds = rounds
        self._dummy_hash = bcrypt.hashpw(b"nudgebox", bcrypt.gensalt(rounds))

    def exists(self, identifier: str) -> bool:
        return self.db.user_exists(identifier)

    def register(self, identifier: str, password: str) -> None:
        """Hash and store a new identity. Raises AlreadyExists on collision."""
        secret = password.encode("utf-8")
        if len(secret) > MAX_PASSWORD_BYTES:
            raise NudgeboxError("Password is too long.")
        digest = bcrypt.hashpw(secret, bcrypt.gensalt(self.rounds))
        self.db.insert_user(identifier, digest)
        logger.info("Registered identifier %s", identifier)

    def verify(self, identifier: str, password: str) -> bool:
        stored = self.db.get_password_hash(identifier)
        candidate = password.encode("utf-8")
        if len(candidate) > MAX_PASSWORD_BYTES:
            return False
        if stored is None:
            bcrypt.checkpw(candidate, self._dummy_hash)
            return False
        return bcrypt.checkpw(candidate, bytes(stored))
