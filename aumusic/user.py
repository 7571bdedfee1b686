"""
User management for aumusic.

Handles registration and password login. Login hands back a signed token;
there is no server-side session.
"""

import logging
from typing import Optional

from .credentials import CredentialCodec
from .database import Database, UserRepository
from .errors import InvalidCredential, ValidationFailed
from .models import User
from .passwords import PasswordHasher


class UserManager:
    """Manages user accounts and login."""

    def __init__(self, database: Database, codec: CredentialCodec, hasher: PasswordHasher):
        """
        Initialize UserManager.

        Args:
            database: Database instance for persistence
            codec: Issues tokens on successful login
            hasher: Password hashing collaborator
        """
        self.database = database
        self.repository = UserRepository(database)
        self.codec = codec
        self.hasher = hasher
        self.logger = logging.getLogger(__name__)

    def register(self, name: str, email: Optional[str], password: str) -> User:
        """
        Create a new user.

        Raises:
            ValidationFailed: missing name/password or name already taken
        """
        name = (name or "").strip()
        if not name or not password:
            raise ValidationFailed("username and password are required")

        user = self.repository.create(name, self.hasher.hash(password), email or None)
        self.logger.info("Registered user %s (%s)", user.name, user.id)
        return user

    def login(self, name: str, password: str) -> str:
        """
        Check a password and issue a token.

        Raises:
            InvalidCredential: unknown user or wrong password (indistinguishable)
        """
        user = self.repository.get_by_name((name or "").strip())
        if not user or not password or not self.hasher.verify(password, user.password_hash):
            self.logger.info("Failed login for %s", name)
            raise InvalidCredential("invalid username or password")
        return self.codec.issue(user.id, user.name)
