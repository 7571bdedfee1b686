"""
Error types for aumusic.

Every failure the core reports is one of these. The web layer maps them
to HTTP responses; nothing in the core retries on its own.
"""


class AumusicError(Exception):
    """Base class for all aumusic errors."""


class InvalidCredential(AumusicError):
    """Token is missing, malformed, expired or signed with the wrong key."""


class Denied(AumusicError):
    """Valid credential, but not the owner of the resource."""


class NotFound(AumusicError):
    """No such record."""


class ValidationFailed(AumusicError):
    """Client input violates a constraint. The message names the constraint."""


class UploadTooLarge(ValidationFailed):
    """Upload exceeds the configured size ceiling."""


class StorageUnavailable(AumusicError):
    """Filesystem I/O failed or a track row has no backing file."""


class PersistenceFailed(AumusicError):
    """Metadata store operation failed."""


class AlreadyExists(ValidationFailed):
    """A stored track already occupies the target path."""
