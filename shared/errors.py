"""
Error taxonomy shared by validators, models, the storage gateway and the
app controllers.

Validation errors are user-facing and never retried. Storage errors are
raised by the gateway and translated into rollbacks by the controllers.
"""

from typing import Iterable, List, Optional


class DeskError(Exception):
    """Base class for every error raised by the desk."""


class ValidationError(DeskError):
    """
    Bad input. Carries every reason that was found, not just the first.

    Attributes:
        reasons: Individual violation messages
    """

    def __init__(self, message: str, reasons: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.reasons: List[str] = list(reasons) if reasons else [message]


class InvalidFormat(ValidationError):
    pass


class TooLarge(ValidationError):
    pass


class TooSmall(ValidationError):
    pass


class UnsafeName(ValidationError):
    pass


class SignatureMismatch(ValidationError):
    pass


class StorageError(DeskError):
    """A storage operation did not complete."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class NetworkUnavailable(StorageError):
    """No connectivity; the operation is abandoned."""


class BackendUnavailable(StorageError):
    """Remote service error, permission problem or outage."""


class StorageTimeout(StorageError):
    """The wait was abandoned. The remote call may still complete later."""


class SizeExceeded(StorageError):
    """Payload is larger than the backend accepts."""


# Failures worth a second attempt
RETRYABLE_ERRORS = (BackendUnavailable, StorageTimeout)
