"""
Exception classes for the inventory import service.

Only job-level problems are raised. Row-level problems are recorded on the
job as data and never cross the row loop.
"""
from typing import Any, Dict, Optional


class ImportServiceError(Exception):
    """Base exception class for the import service."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class MalformedInputError(ImportServiceError):
    """Raised when the CSV has no parsable header plus data rows."""

    def __init__(
        self,
        message: str = "CSV must have a header row and at least one data row",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code="MALFORMED_INPUT", details=details)


class InvalidJobStateError(ImportServiceError):
    """Raised when a job operation is requested from the wrong state."""

    def __init__(
        self,
        message: str = "Operation not allowed in the current job state",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code="INVALID_JOB_STATE", details=details)


class StoreError(ImportServiceError):
    """Raised by item stores when a lookup, create or update fails."""

    def __init__(
        self,
        message: str = "Item store operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code="STORE_ERROR", details=details)


class JobNotFoundError(ImportServiceError):
    """Raised when a runner is asked about a job id it does not know."""

    def __init__(self, job_id: str):
        super().__init__(
            message=f"Import job {job_id} not found",
            code="JOB_NOT_FOUND",
            details={"job_id": job_id},
        )
