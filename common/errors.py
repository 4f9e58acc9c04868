"""
Error taxonomy for detection runs, review transitions and resolutions.
"""
from __future__ import annotations

from enum import Enum


class DedupError(Exception):
    """Base class for all duplicate-engine errors."""


class DetectionRunError(DedupError):
    """A detection run did not complete; no evidence was persisted."""

    def __init__(self, submission_id: str, message: str):
        super().__init__(f"Detection run for {submission_id} failed: {message}")
        self.submission_id = submission_id


class StorageError(DedupError):
    """A storage transaction failed and was rolled back."""


class ReviewStateError(DedupError):
    """Illegal submission lifecycle transition."""


class ReviewClaimConflict(ReviewStateError):
    """Another reviewer already holds the submission."""


class ResolutionErrorCode(str, Enum):
    NOT_AUTHORIZED = "not_authorized"
    CANONICAL_NOT_FOUND = "canonical_not_found"
    RETIRED_ID_NOT_FOUND = "retired_id_not_found"
    INVALID_TITLE = "invalid_title"
    INVALID_REQUEST = "invalid_request"
    CONFLICT = "conflict"
    GENERIC_FAILURE = "generic_failure"


class ResolutionFailed(DedupError):
    """Raised inside a resolution transaction to abort it; converted to a result."""

    def __init__(self, code: ResolutionErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message
