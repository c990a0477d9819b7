from typing import Optional

from google.api_core import exceptions as api_exceptions


class SyncError(Exception):
    """Base class for every failure raised by the sync core."""
    retryable = False

    def __init__(self, message: str, resource: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.resource = resource


class NotFoundError(SyncError):
    """A profile, conversation or message does not exist."""


class PermissionDeniedError(SyncError):
    """The caller is not allowed to see or change the resource."""


class TransientIOError(SyncError):
    """Store or network failure. Safe to retry."""
    retryable = True


class PayloadValidationError(SyncError):
    """Malformed input, e.g. the wrong payload field for a message type."""


class TranslationError(SyncError):
    """The text transform collaborator could not produce a translation."""


def map_store_error(error: Exception, resource: str) -> SyncError:
    """Translate a google.api_core failure into the sync error taxonomy."""
    if isinstance(error, SyncError):
        return error
    if isinstance(error, api_exceptions.NotFound):
        return NotFoundError(f"{resource} not found", resource)
    if isinstance(error, (api_exceptions.PermissionDenied,
                          api_exceptions.Forbidden,
                          api_exceptions.Unauthenticated)):
        return PermissionDeniedError(f"Access to {resource} denied: {error}", resource)
    if isinstance(error, api_exceptions.InvalidArgument):
        return PayloadValidationError(f"Store rejected write to {resource}: {error}", resource)
    return TransientIOError(f"Store failure on {resource}: {error}", resource)
