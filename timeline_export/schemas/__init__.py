from timeline_export.schemas.export import (
    ClipPayload,
    ExportJobStatus,
    ExportSettingsPayload,
    ExportStartRequest,
    ExportStartResponse,
    ExportStatusResponse,
    MessageResponse,
    TrackPayload,
)

__all__ = [
    "ClipPayload",
    "TrackPayload",
    "ExportSettingsPayload",
    "ExportStartRequest",
    "ExportStartResponse",
    "ExportJobStatus",
    "ExportStatusResponse",
    "MessageResponse",
]
