"""Serves locally stored files so local signed URLs resolve in development."""

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from timeline_export.api.deps import Storage
from timeline_export.exceptions import StorageError
from timeline_export.services.storage_service import LocalStorageService

router = APIRouter()

MEDIA_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".aac": "audio/aac",
}


@router.get("/{storage_key:path}")
async def get_file(storage_key: str, storage: Storage) -> FileResponse:
    """Serve files from local storage."""
    if not isinstance(storage, LocalStorageService):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Local storage not enabled",
        )

    try:
        file_path = storage.get_file_path(storage_key)
    except StorageError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    if not file_path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    media_type = MEDIA_TYPES.get(file_path.suffix.lower(), "application/octet-stream")
    return FileResponse(path=str(file_path), media_type=media_type)
