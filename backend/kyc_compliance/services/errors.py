"""
KYC Error Taxonomy — local input errors, provider errors and persistence errors.

Provider errors are never raised past the gateway; they travel inside a
GatewayResult so callers can inspect them without try/except.
"""
from typing import Optional, List


class KYCError(Exception):
    """Base class for all verification errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputIncomplete(KYCError):
    """Required fields are missing; raised before any network call."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = missing or []


class ProviderError(KYCError):
    """Base class for failures reported at the gateway boundary."""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderUnavailable(ProviderError):
    """Transport failure, timeout, or every credential exhausted."""

    retryable = True


class ProviderRejected(ProviderError):
    """The provider understood the request and declined it."""

    def __init__(self, message: str, status_code: Optional[int] = None, malformed: bool = False):
        super().__init__(message, status_code)
        self.malformed = malformed


class ProviderResponseInvalid(ProviderError):
    """The provider answered with a body we cannot interpret."""


class PersistenceFailure(KYCError):
    """Audit write or evidence upload failed after a successful provider call."""


class RunInProgress(KYCError):
    """A validation run is already scanning or validating this subject."""


class InvalidTransition(KYCError):
    """An action was requested from a state that does not allow it."""


class ResetNotConfirmed(KYCError):
    """A destructive reset was requested without both confirmations."""
