"""
Asset Provenance Registry - Content Exceptions

This module defines exceptions for metadata construction, content publishing,
and gateway consistency checks.
"""

from typing import Optional


class ContentError(Exception):
    """Base exception for content-related errors."""
    retryable = False


class MetadataError(ContentError):
    """Exception raised when a metadata document cannot be built or validated."""
    pass


class StoreUnavailable(ContentError):
    """Exception raised when the content store cannot be reached or refuses the request."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = True):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class GatewayFetchError(ContentError):
    """Exception raised when a gateway does not return the requested content."""

    def __init__(self, gateway: str, content_id: str, status_code: Optional[int] = None,
                 message: Optional[str] = None):
        self.gateway = gateway
        self.content_id = content_id
        self.status_code = status_code
        if message is None:
            message = f"Gateway {gateway} could not serve {content_id} (status {status_code})"
        super().__init__(message)


class DigestMismatch(ContentError):
    """Exception raised when fetched content does not hash to the published digest."""

    def __init__(self, content_id: str, expected: str, actual: str, gateway: Optional[str] = None):
        self.content_id = content_id
        self.expected = expected
        self.actual = actual
        self.gateway = gateway
        super().__init__(
            f"Digest mismatch for {content_id}: expected {expected}, got {actual}"
            + (f" from {gateway}" if gateway else "")
        )


class ContentUnreachable(ContentError):
    """Exception raised when no gateway served the content within the wait budget."""
    retryable = True

    def __init__(self, content_id: str, waited: float, attempts: int):
        self.content_id = content_id
        self.waited = waited
        self.attempts = attempts
        super().__init__(
            f"Content {content_id} unreachable after {attempts} attempts over {waited:.1f}s"
        )


class VerificationCancelled(ContentError):
    """Exception raised when verification polling is cancelled."""
    pass
