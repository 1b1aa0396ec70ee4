"""
Exception types raised while enriching and uploading images.
"""

from typing import Optional, Any


class PublisherError(Exception):
    """Base class for all publishing errors."""


class TransportError(PublisherError):
    """A call to an external service failed before a usable reply arrived."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(PublisherError):
    """The service replied, but the payload was missing or not valid for the schema."""


class MaxRetriesExceeded(PublisherError):
    """A request kept failing until its retry budget ran out."""

    def __init__(self, attempts: int, last_error: Optional[Exception] = None):
        message = f"Maximum retries reached after {attempts} attempts"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class EnrichmentStepError(PublisherError):
    """One enrichment step failed for a record."""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step


class BatchAbortedError(PublisherError):
    """A step configured to abort the batch failed; the report keeps every record's outcome."""

    def __init__(self, message: str, report: Any):
        super().__init__(message)
        self.report = report


class UploadStepError(PublisherError):
    """A remote UI interaction failed; the rest of the upload sequence was abandoned."""

    def __init__(self, step: str, message: str, report: Any = None):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.report = report


class UploadTimeoutError(UploadStepError):
    """A completion indicator did not appear before its timeout."""
