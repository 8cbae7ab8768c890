"""Custom exceptions for the timeline export service.

Every error carries a machine-readable code (see constants.error_codes), the
HTTP status it maps to, and a human-readable message. The exception handlers
in main.py turn them into `{success: false, error, code}` responses.
"""

from typing import Any

from timeline_export.constants.error_codes import get_error_spec, user_message


class ExportError(Exception):
    """Base exception for all export service errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return get_error_spec(self.code).get("retryable", False)

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "code": self.code}


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(ExportError):
    """Base class for validation errors."""

    code = "VALIDATION_ERROR"
    status_code = 400


class TimelineValidationError(ValidationError):
    """Timeline failed validation; carries every error and warning found."""

    message = "Timeline validation failed"

    def __init__(self, errors: list[str], warnings: list[str] | None = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        message = f"Timeline validation failed: {'; '.join(self.errors)}" if self.errors else None
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "code": self.code,
            "errors": self.errors,
            "warnings": self.warnings,
        }


class InvalidExportSettingsError(ValidationError):
    """Export settings cannot be resolved to an output profile."""

    code = "INVALID_EXPORT_SETTINGS"
    message = "Invalid export settings"

    def __init__(self, field: str | None = None, value: Any = None):
        message = self.message
        if field:
            message = f"Invalid export setting '{field}': {value!r}"
        super().__init__(message)


# =============================================================================
# Job Errors
# =============================================================================


class JobNotFoundError(ExportError):
    """Export job not found."""

    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Export job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Export job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class JobStateError(ExportError):
    """Job is in a state that does not allow the requested action."""

    code = "JOB_ALREADY_FINISHED"
    status_code = 409
    message = "Export job has already finished"

    def __init__(self, job_id: str | None = None, status: str | None = None):
        message = self.message
        if job_id and status:
            message = f"Export job {job_id} has already finished ({status})"
        super().__init__(message)


class ExportNotReadyError(ExportError):
    """Download requested before the job completed."""

    code = "EXPORT_NOT_READY"
    status_code = 400
    message = "Export not ready for download"


class JobCancelledError(ExportError):
    """Raised inside a running job once its cancellation has been observed."""

    code = "JOB_CANCELLED"
    status_code = 409
    message = "Cancelled by user"


# =============================================================================
# Asset Errors
# =============================================================================


class AssetResolutionError(ExportError):
    """Asset reference could not be turned into a fetchable URL."""

    code = "ASSET_RESOLUTION_FAILED"
    status_code = 422
    message = "Could not resolve asset"

    def __init__(self, asset_key: str | None = None, reason: str | None = None):
        message = self.message
        if asset_key:
            message = f"Could not resolve asset {asset_key}"
            if reason:
                message += f": {reason}"
        super().__init__(message)


class AssetDownloadError(ExportError):
    """One download attempt failed.

    `retryable` is decided by the failure itself: HTTP 4xx responses are
    terminal, everything else (timeouts, 5xx, transport errors, empty or
    truncated bodies) may succeed on a later attempt.
    """

    code = "ASSET_DOWNLOAD_FAILED"
    status_code = 502
    message = "Asset download failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        url: str | None = None,
        http_status: int | None = None,
        retryable: bool = True,
    ):
        self.url = url
        self.http_status = http_status
        self._retryable = retryable
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self._retryable


# =============================================================================
# Render Errors
# =============================================================================


class RenderError(ExportError):
    """The transcoding subprocess failed; `code` is the failure category."""

    code = "RENDER_UNKNOWN"
    status_code = 500

    def __init__(self, code: str = "RENDER_UNKNOWN", detail: str | None = None):
        self.detail = detail
        super().__init__(user_message(code), code=code)


# =============================================================================
# System Errors (500)
# =============================================================================


class StorageError(ExportError):
    """Storage error."""

    code = "STORAGE_ERROR"
    status_code = 500
    message = "Storage error"
