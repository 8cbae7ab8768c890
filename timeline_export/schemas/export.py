"""Request/response bodies for the /export routes.

The editor sends camelCase JSON; fields accept either spelling. Payloads are
deliberately loose (times may be floats, settings unchecked) because range and
enumeration rules belong to the timeline validator, which reports them all at
once instead of failing on the first.
"""

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from timeline_export.render.timeline import (
    EXTERNAL_ASSET_PREFIX,
    ExportSettings,
    ExternalAsset,
    TimelineElement,
    Track,
    Transition,
)

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _ms(value: float | None) -> int | None:
    return None if value is None else int(round(value))


class ExternalAssetPayload(CamelModel):
    url: str
    platform: str | None = None


class TransitionPayload(CamelModel):
    type: str = "fade"
    # Milliseconds; `duration` is the editor's older spelling
    duration_ms: float | None = Field(default=None, alias="durationMs")
    duration: float | None = None

    def to_transition(self) -> Transition:
        duration = self.duration_ms if self.duration_ms is not None else self.duration
        return Transition(type=self.type, duration_ms=max(0, _ms(duration) or 0))


class ClipPayload(CamelModel):
    id: str
    type: str
    track_id: str = Field(alias="trackId")
    timeline_start_ms: float = Field(alias="timelineStartMs")
    timeline_end_ms: float = Field(alias="timelineEndMs")
    source_start_ms: float | None = Field(default=None, alias="sourceStartMs")
    source_end_ms: float | None = Field(default=None, alias="sourceEndMs")
    asset_id: str | None = Field(default=None, alias="assetId")
    external_asset: ExternalAssetPayload | None = Field(default=None, alias="externalAsset")
    speed: float | None = None
    volume: float | None = None
    opacity: float | None = None
    properties: dict[str, Any] = Field(default_factory=dict)
    transition_in: TransitionPayload | None = Field(default=None, alias="transitionIn")
    transition_out: TransitionPayload | None = Field(default=None, alias="transitionOut")

    def _external(self) -> ExternalAsset | None:
        if self.external_asset is not None:
            return ExternalAsset(url=self.external_asset.url, platform=self.external_asset.platform)
        # Stock media arrives as an `external_…` id with the descriptor in properties
        raw = self.properties.get("externalAsset")
        if isinstance(raw, dict) and raw.get("url"):
            return ExternalAsset(url=str(raw["url"]), platform=raw.get("platform"))
        return None

    def _transition(self, own: TransitionPayload | None, key: str) -> Transition | None:
        if own is not None:
            return own.to_transition()
        raw = self.properties.get(key)
        if not isinstance(raw, dict):
            return None
        try:
            return TransitionPayload.model_validate(raw).to_transition()
        except ValidationError as e:
            logger.warning(
                f"[EXPORT] Element {self.id}: ignoring malformed {key} ({e.error_count()} error(s))"
            )
            return None

    def to_element(self) -> TimelineElement:
        external = self._external()
        asset_id = self.asset_id
        if external is not None and asset_id and asset_id.startswith(EXTERNAL_ASSET_PREFIX):
            asset_id = None
        return TimelineElement(
            id=self.id,
            kind=self.type,
            track_id=self.track_id,
            timeline_start_ms=_ms(self.timeline_start_ms),
            timeline_end_ms=_ms(self.timeline_end_ms),
            source_start_ms=_ms(self.source_start_ms),
            source_end_ms=_ms(self.source_end_ms),
            asset_id=asset_id,
            external_asset=external,
            speed=1.0 if self.speed is None else self.speed,
            volume=1.0 if self.volume is None else self.volume,
            opacity=1.0 if self.opacity is None else self.opacity,
            properties=dict(self.properties),
            transition_in=self._transition(self.transition_in, "transitionIn"),
            transition_out=self._transition(self.transition_out, "transitionOut"),
        )


class TrackPayload(CamelModel):
    id: str
    index: int
    type: str
    name: str | None = None

    def to_track(self) -> Track:
        return Track(id=self.id, index=self.index, kind=self.type, name=self.name)


class ExportSettingsPayload(CamelModel):
    resolution: str = "720p"
    fps: Any = 30
    quality: str = "medium"
    quick_export: bool = Field(default=False, alias="quickExport")
    aspect_ratio: str | None = Field(default=None, alias="aspectRatio")

    def to_settings(self) -> ExportSettings:
        return ExportSettings(
            resolution=self.resolution,
            fps=self.fps,
            quality=self.quality,
            quick=self.quick_export,
            aspect_ratio=self.aspect_ratio,
        )


class ExportStartRequest(CamelModel):
    clips: list[ClipPayload]
    tracks: list[TrackPayload]
    export_settings: ExportSettingsPayload = Field(
        default_factory=ExportSettingsPayload, alias="exportSettings"
    )


class ExportStartResponse(CamelModel):
    success: bool = True
    job_id: str = Field(alias="jobId")
    warnings: list[str] = Field(default_factory=list)


class ExportJobStatus(CamelModel):
    id: str
    status: str
    progress: int
    stage: str | None = None
    error: str | None = None
    download_url: str | None = Field(default=None, alias="downloadUrl")
    created_at: str | None = Field(default=None, alias="createdAt")
    completed_at: str | None = Field(default=None, alias="completedAt")


class ExportStatusResponse(CamelModel):
    success: bool = True
    job: ExportJobStatus


class MessageResponse(CamelModel):
    success: bool = True
    message: str
