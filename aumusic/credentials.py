"""
Identity tokens for aumusic.

A token is an HS256-signed JWT carrying ``userid`` and ``username``. Nothing
is stored server-side; the token stays valid until the client drops it, or
until its ``exp`` claim passes when a lifetime is configured.
"""

import time
from typing import Optional

import jwt

from .errors import InvalidCredential
from .models import Claims

ALGORITHM = "HS256"


class CredentialCodec:
    """Issues and decodes signed identity tokens."""

    def __init__(self, secret: str, token_ttl_seconds: int = 0):
        """
        Args:
            secret: Shared HMAC signing secret
            token_ttl_seconds: Lifetime of issued tokens; 0 issues tokens without exp
        """
        if not secret:
            raise ValueError("signing secret must not be empty")
        self._secret = secret
        self.token_ttl_seconds = token_ttl_seconds

    def issue(self, userid: str, username: str, now: Optional[float] = None) -> str:
        payload = {"userid": userid, "username": username}
        if self.token_ttl_seconds > 0:
            issued_at = int(now if now is not None else time.time())
            payload["iat"] = issued_at
            payload["exp"] = issued_at + self.token_ttl_seconds
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def decode(self, token: Optional[str]) -> Claims:
        """
        Verify a token and return its claims.

        Raises:
            InvalidCredential: empty, malformed, wrongly signed, wrong algorithm,
                expired, or missing/mistyped claims
        """
        if not token:
            raise InvalidCredential("missing token")
        try:
            # Pinning algorithms rejects "none" and asymmetric algorithms
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except jwt.InvalidTokenError as e:
            raise InvalidCredential(str(e)) from e

        userid = payload.get("userid")
        username = payload.get("username")
        if not isinstance(userid, str) or not userid:
            raise InvalidCredential("token has no valid userid claim")
        if not isinstance(username, str) or not username:
            raise InvalidCredential("token has no valid username claim")
        return Claims(userid=userid, username=username)
