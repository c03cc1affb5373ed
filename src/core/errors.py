"""
Error taxonomy for the insights pipeline.

Each stage raises or records one of these categories:
- SourceUnavailableError: the platform cannot be reached or refuses the account
- PartialSourceFailure: a single dimension could not be collected
- ValidationFailure: the collected payload is structurally unusable
- TransformationWarning: a value could not be normalized
- StorageFailure: a dimension could not be written
"""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class PipelineErrorType(Enum):
    """Categorized error types for pipeline operations."""

    SOURCE_UNAVAILABLE = "source_unavailable"
    PARTIAL_SOURCE = "partial_source_failure"
    VALIDATION = "validation_error"
    TRANSFORMATION = "transformation_warning"
    STORAGE = "storage_error"
    CONFIGURATION = "configuration_error"
    UNKNOWN = "unknown_error"


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(
        self,
        message: str,
        error_type: PipelineErrorType = PipelineErrorType.UNKNOWN,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.details = details or {}
        self.recoverable = recoverable
        self.timestamp = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/monitoring."""
        return {
            "error_type": self.error_type.value,
            "message": str(self),
            "details": self.details,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


class SourceUnavailableError(PipelineError):
    """Raised when the ads platform cannot serve a request.

    ``transient`` marks failures worth retrying (5xx, 429, timeouts, connection
    resets). ``fatal`` marks account-level refusals (bad token, unknown account,
    missing permission) that make every other dimension request pointless.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        platform_code: int | None = None,
        transient: bool = False,
        fatal: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, PipelineErrorType.SOURCE_UNAVAILABLE, details, recoverable=transient)
        self.status_code = status_code
        self.platform_code = platform_code
        self.transient = transient
        self.fatal = fatal

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "status_code": self.status_code,
                "platform_code": self.platform_code,
                "transient": self.transient,
                "fatal": self.fatal,
            }
        )
        return data


class PartialSourceFailure(PipelineError):
    """One dimension failed while the others may have succeeded."""

    def __init__(self, dimension: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(f"{dimension}: {message}", PipelineErrorType.PARTIAL_SOURCE, details, recoverable=True)
        self.dimension = dimension


class ValidationFailure(PipelineError):
    """Raised when collected data fails structural validation."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message, PipelineErrorType.VALIDATION, {"errors": errors or []}, recoverable=False)
        self.errors = errors or []


class TransformationWarning(PipelineError):
    """A value could not be normalized and was passed through unchanged."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, PipelineErrorType.TRANSFORMATION, details, recoverable=True)


class StorageFailure(PipelineError):
    """Raised when a dimension upsert fails."""

    def __init__(self, dimension: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, PipelineErrorType.STORAGE, details, recoverable=True)
        self.dimension = dimension


class ConfigurationError(PipelineError):
    """Raised when required configuration (e.g. the access token) is missing."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, PipelineErrorType.CONFIGURATION, details, recoverable=False)
