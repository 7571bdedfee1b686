"""
Pytest configuration for aumusic tests.

Provides:
- fast_hasher: argon2 hasher with minimal cost parameters, so tests that
  register users don't pay for production-strength hashing
"""

import pytest

from aumusic.passwords import PasswordHasher


@pytest.fixture
def fast_hasher():
    """Argon2 hasher with the cheapest valid parameters."""
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)
