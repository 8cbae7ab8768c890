"""Timeline domain model shared by the validator, downloader and compiler.

Elements and tracks are siblings: an element references its track by id.
All times are integer milliseconds; `timeline_end_ms` is exclusive.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

# Shortest element the pipeline renders. Shorter elements are extended.
MIN_DURATION_MS = 100

# Shortest timeline the compiler emits, so empty timelines still produce a clip.
MIN_TIMELINE_DURATION_MS = 2000

EXTERNAL_ASSET_PREFIX = "external_"


class ElementKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    GIF = "gif"
    TEXT = "text"
    CAPTION = "caption"


class TrackKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    TEXT = "text"
    CAPTION = "caption"
    SFX = "sfx"


VISUAL_KINDS = frozenset(
    k.value for k in (ElementKind.VIDEO, ElementKind.IMAGE, ElementKind.GIF)
)
MEDIA_KINDS = VISUAL_KINDS | {ElementKind.AUDIO.value}
TEXT_KINDS = frozenset(k.value for k in (ElementKind.TEXT, ElementKind.CAPTION))
ELEMENT_KINDS = frozenset(k.value for k in ElementKind)
TRACK_KINDS = frozenset(k.value for k in TrackKind)
AUDIO_TRACK_KINDS = frozenset((TrackKind.AUDIO.value, TrackKind.SFX.value))


@dataclass
class ExternalAsset:
    """Media hosted outside our storage (stock libraries, user links)."""

    url: str
    platform: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "platform": self.platform}


@dataclass
class Transition:
    type: str = "fade"
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "durationMs": self.duration_ms}


@dataclass
class TimelineElement:
    id: str
    kind: str
    track_id: str
    timeline_start_ms: int
    timeline_end_ms: int
    source_start_ms: int | None = None
    source_end_ms: int | None = None
    asset_id: str | None = None
    external_asset: ExternalAsset | None = None
    speed: float = 1.0
    volume: float = 1.0
    opacity: float = 1.0
    properties: dict[str, Any] = field(default_factory=dict)
    transition_in: Transition | None = None
    transition_out: Transition | None = None

    @property
    def duration_ms(self) -> int:
        return self.timeline_end_ms - self.timeline_start_ms

    @property
    def has_source_trim(self) -> bool:
        return self.source_start_ms is not None or self.source_end_ms is not None

    @property
    def is_visual(self) -> bool:
        return self.kind in VISUAL_KINDS

    @property
    def is_text(self) -> bool:
        return self.kind in TEXT_KINDS

    @property
    def is_media(self) -> bool:
        return self.kind in MEDIA_KINDS

    @property
    def asset_key(self) -> str | None:
        """Identity used to dedupe downloads and graph inputs."""
        if self.asset_id:
            return self.asset_id
        if self.external_asset and self.external_asset.url:
            return f"external:{self.external_asset.url}"
        return None

    @property
    def is_external(self) -> bool:
        if self.external_asset is not None:
            return True
        return bool(self.asset_id and self.asset_id.startswith(EXTERNAL_ASSET_PREFIX))

    @property
    def text(self) -> str:
        return str(self.properties.get("text") or "")

    def copy(self, **changes: Any) -> "TimelineElement":
        """Return a corrected copy; the properties dict is not shared."""
        changes.setdefault("properties", dict(self.properties))
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind,
            "trackId": self.track_id,
            "timelineStartMs": self.timeline_start_ms,
            "timelineEndMs": self.timeline_end_ms,
            "sourceStartMs": self.source_start_ms,
            "sourceEndMs": self.source_end_ms,
            "assetId": self.asset_id,
            "externalAsset": self.external_asset.to_dict() if self.external_asset else None,
            "speed": self.speed,
            "volume": self.volume,
            "opacity": self.opacity,
            "properties": self.properties,
            "transitionIn": self.transition_in.to_dict() if self.transition_in else None,
            "transitionOut": self.transition_out.to_dict() if self.transition_out else None,
        }


@dataclass
class Track:
    id: str
    index: int
    kind: str
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "index": self.index,
            "type": self.kind,
            "name": self.name,
        }


@dataclass
class ExportSettings:
    resolution: str = "720p"
    fps: int = 30
    quality: str = "medium"
    quick: bool = False
    aspect_ratio: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "resolution": self.resolution,
            "fps": self.fps,
            "quality": self.quality,
            "quickExport": self.quick,
            "aspectRatio": self.aspect_ratio,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExportSettings":
        return cls(
            resolution=data.get("resolution", "720p"),
            fps=data.get("fps", 30),
            quality=data.get("quality", "medium"),
            quick=bool(data.get("quickExport", False)),
            aspect_ratio=data.get("aspectRatio"),
        )
