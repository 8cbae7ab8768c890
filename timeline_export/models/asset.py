from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from timeline_export.models.base import Base, TimestampMixin, UUIDMixin


class Asset(Base, UUIDMixin, TimestampMixin):
    """Uploaded media. The export pipeline only reads `storage_key`."""

    __tablename__ = "assets"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Type: video, audio, image
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Asset {self.name} ({self.type})>"
