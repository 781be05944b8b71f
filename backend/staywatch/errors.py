"""
Failure taxonomy for extraction jobs.

Every failure inside the pipeline is translated into one of these kinds before it
reaches the observation store, the profile's last check status or the API.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSIENT_NETWORK = "TransientNetworkError"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    CHALLENGE_UNRESOLVED = "ChallengeUnresolved"
    STRUCTURAL_MISMATCH = "StructuralExtractionMismatch"
    RATE_LIMITED = "RateLimited"
    DATA_INTEGRITY = "DataIntegrityError"


class ExtractionError(Exception):
    """Base class for every translated extraction failure."""

    kind: ErrorKind = ErrorKind.TRANSIENT_NETWORK
    snapshot_path: Optional[str] = None

    def __init__(self, message: str = "", provider_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider_code = provider_code

    def __str__(self) -> str:
        if self.provider_code:
            return f"[{self.provider_code}] {self.message}"
        return self.message


class TransientNetworkError(ExtractionError):
    """Navigation or timeout failure. Retried by the next strategy or tick."""

    kind = ErrorKind.TRANSIENT_NETWORK


class ProviderUnavailable(ExtractionError):
    """Provider cannot be used right now (open circuit, unresolved challenge)."""

    kind = ErrorKind.PROVIDER_UNAVAILABLE


class ChallengeUnresolved(ProviderUnavailable):
    """Anti-bot content marker never appeared during challenge absorption."""

    kind = ErrorKind.CHALLENGE_UNRESOLVED


class StructuralExtractionMismatch(ExtractionError):
    """A strategy ran but produced zero well-formed records."""

    kind = ErrorKind.STRUCTURAL_MISMATCH


class RateLimited(ExtractionError):
    """Provider returned an explicit throttling signal."""

    kind = ErrorKind.RATE_LIMITED


class DataIntegrityError(ExtractionError):
    """A record parsed but carries an implausible value. The record is dropped."""

    kind = ErrorKind.DATA_INTEGRITY
