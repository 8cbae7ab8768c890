from timeline_export.models.asset import Asset
from timeline_export.models.base import Base
from timeline_export.models.export_job import ExportJobRecord

__all__ = [
    "Base",
    "Asset",
    "ExportJobRecord",
]
