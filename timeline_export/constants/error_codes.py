"""Error codes dictionary for the export API.

This is the single source of truth for all error codes, their retryability,
and the user-facing message shown when a job fails with that code. Render
failure categories produced by the transcode executor are keyed here as well.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    user_message: str


# Error codes dictionary - single source of truth
ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Request / validation errors (not retryable, fix input)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
        "user_message": "The timeline is invalid",
    },
    "INVALID_EXPORT_SETTINGS": {
        "retryable": False,
        "user_message": "Export settings are invalid",
    },
    # ==========================================================================
    # Job errors
    # ==========================================================================
    "JOB_NOT_FOUND": {
        "retryable": False,
        "user_message": "Export job not found",
    },
    "JOB_ALREADY_FINISHED": {
        "retryable": False,
        "user_message": "Export job has already finished",
    },
    "EXPORT_NOT_READY": {
        "retryable": True,
        "user_message": "Export not ready for download",
    },
    "JOB_CANCELLED": {
        "retryable": False,
        "user_message": "Cancelled by user",
    },
    # ==========================================================================
    # Asset errors
    # ==========================================================================
    "ASSET_RESOLUTION_FAILED": {
        "retryable": False,
        "user_message": "Could not resolve the asset location",
    },
    "ASSET_DOWNLOAD_FAILED": {
        "retryable": True,
        "user_message": "Could not download the asset",
    },
    # ==========================================================================
    # Render failure categories
    # ==========================================================================
    "RENDER_CORRUPTED_INPUT": {
        "retryable": False,
        "user_message": "One of the media files is corrupted or in an unreadable format",
    },
    "RENDER_MISSING_FILE": {
        "retryable": True,
        "user_message": "A media file required for the export could not be found",
    },
    "RENDER_PERMISSION_DENIED": {
        "retryable": False,
        "user_message": "The renderer was not allowed to read or write a required file",
    },
    "RENDER_UNSUPPORTED_CODEC": {
        "retryable": False,
        "user_message": "One of the media files uses a codec that is not supported",
    },
    "RENDER_FILTER_ERROR": {
        "retryable": False,
        "user_message": "The timeline could not be converted into a valid render graph",
    },
    "RENDER_STORAGE_EXHAUSTED": {
        "retryable": True,
        "user_message": "The render server ran out of disk space",
    },
    "RENDER_OUT_OF_MEMORY": {
        "retryable": True,
        "user_message": "The render ran out of memory; try a lower resolution or a shorter timeline",
    },
    "RENDER_INVALID_PARAMETERS": {
        "retryable": False,
        "user_message": "The export parameters were rejected by the encoder",
    },
    "RENDER_UNKNOWN": {
        "retryable": True,
        "user_message": "The video could not be rendered due to an unexpected error",
    },
    # ==========================================================================
    # System errors (retryable with backoff)
    # ==========================================================================
    "STORAGE_ERROR": {
        "retryable": True,
        "user_message": "The rendered video could not be uploaded",
    },
    "INTERNAL_ERROR": {
        "retryable": True,
        "user_message": "Internal server error",
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and user message
    """
    return ERROR_CODES.get(code, {"retryable": False})


def user_message(code: str) -> str:
    """Return the user-facing message for an error code."""
    return get_error_spec(code).get("user_message", ERROR_CODES["INTERNAL_ERROR"]["user_message"])
