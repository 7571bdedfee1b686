"""
Ownership checks for aumusic.

Every read, write or delete of a user-owned record passes through here
before any I/O happens.
"""

import logging
from typing import Optional

from .credentials import CredentialCodec
from .errors import Denied, InvalidCredential
from .models import Claims


class OwnershipGuard:
    """Decides whether a credential may act on a resource."""

    def __init__(self, codec: CredentialCodec):
        self.codec = codec
        self.logger = logging.getLogger(__name__)

    def authorize(self, token: Optional[str], resource_owner_id: str) -> Claims:
        """
        Decode a token and require it to belong to the resource owner.

        Returns:
            The decoded claims

        Raises:
            Denied: bad credential or different owner
        """
        try:
            claims = self.codec.decode(token)
        except InvalidCredential as e:
            raise Denied("invalid credential") from e
        return self.check(claims, resource_owner_id)

    def check(self, claims: Claims, resource_owner_id: str) -> Claims:
        """Same comparison as authorize, for an already decoded credential."""
        if claims.userid != resource_owner_id:
            self.logger.info("User %s is not the owner of the requested resource", claims.userid)
            raise Denied("not the owner")
        return claims
