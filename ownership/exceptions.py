"""
Asset Provenance Registry - Ownership Exceptions
"""

from typing import Optional


class OwnershipQueryError(Exception):
    """Raised when an ownership query cannot be answered; carries the failed step."""

    def __init__(self, message: str, step: Optional[str] = None):
        self.step = step
        super().__init__(f"[{step}] {message}" if step else message)
