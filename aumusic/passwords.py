"""
Password hashing for aumusic.

Wraps argon2id so that the encoded hash carries its own salt and parameters;
verifying never needs anything besides the stored string.
"""

import logging

from argon2 import PasswordHasher as Argon2Hasher
from argon2.exceptions import InvalidHashError, VerificationError

logger = logging.getLogger(__name__)

# Memory in KiB (64 MiB), iterations, lanes
DEFAULT_MEMORY_COST = 64 * 1024
DEFAULT_TIME_COST = 3
DEFAULT_PARALLELISM = 2


class PasswordHasher:
    """Hashes and verifies user passwords."""

    def __init__(
        self,
        time_cost: int = DEFAULT_TIME_COST,
        memory_cost: int = DEFAULT_MEMORY_COST,
        parallelism: int = DEFAULT_PARALLELISM,
    ):
        self._hasher = Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=32,
            salt_len=16,
        )

    def hash(self, plaintext: str) -> str:
        """Return the encoded argon2id hash, e.g. ``$argon2id$v=19$m=65536,t=3,p=2$...``."""
        return self._hasher.hash(plaintext)

    def verify(self, plaintext: str, encoded_hash: str) -> bool:
        """Check a password against an encoded hash. Never raises on mismatch."""
        try:
            return self._hasher.verify(encoded_hash, plaintext)
        except InvalidHashError:
            logger.warning("Stored password hash is not a valid argon2 hash")
            return False
        except VerificationError:
            return False
