"""Resolve user-facing export settings into a concrete encode profile."""

from dataclasses import dataclass
from typing import Any

from timeline_export.exceptions import InvalidExportSettingsError
from timeline_export.render.timeline import ExportSettings

# Vertical (short-form) frame sizes; horizontal swaps width and height.
RESOLUTIONS: dict[str, tuple[int, int]] = {
    "480p": (480, 854),
    "720p": (720, 1280),
    "1080p": (1080, 1920),
}

ASPECT_RATIOS = ("vertical", "horizontal")
DEFAULT_ASPECT_RATIO = "vertical"

MIN_FPS = 24
MAX_FPS = 60

AUDIO_SAMPLE_RATE = 48000


@dataclass(frozen=True)
class QualityProfile:
    crf: int
    video_bitrate: str
    audio_bitrate: str


QUALITY_PROFILES: dict[str, QualityProfile] = {
    "low": QualityProfile(crf=28, video_bitrate="2M", audio_bitrate="128k"),
    "medium": QualityProfile(crf=23, video_bitrate="5M", audio_bitrate="192k"),
    "high": QualityProfile(crf=18, video_bitrate="10M", audio_bitrate="320k"),
}

DEFAULT_PRESET = "medium"
QUICK_PRESET = "veryfast"


@dataclass(frozen=True)
class OutputSettings:
    """Concrete output parameters for one render."""

    width: int
    height: int
    fps: int
    crf: int
    preset: str
    video_bitrate: str
    audio_bitrate: str
    audio_sample_rate: int = AUDIO_SAMPLE_RATE

    @property
    def buffer_size(self) -> str:
        """VBV buffer: twice the max bitrate."""
        value, unit = self.video_bitrate[:-1], self.video_bitrate[-1]
        return f"{int(value) * 2}{unit}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "crf": self.crf,
            "preset": self.preset,
            "video_bitrate": self.video_bitrate,
            "audio_bitrate": self.audio_bitrate,
            "audio_sample_rate": self.audio_sample_rate,
        }


def resolve_output_settings(settings: ExportSettings) -> OutputSettings:
    """Map resolution/quality/fps/aspect tiers to pixel dimensions and an encode profile.

    Raises:
        InvalidExportSettingsError: if any tier is outside its enumerated set.
    """
    if settings.resolution not in RESOLUTIONS:
        raise InvalidExportSettingsError("resolution", settings.resolution)
    if settings.quality not in QUALITY_PROFILES:
        raise InvalidExportSettingsError("quality", settings.quality)
    if not isinstance(settings.fps, int) or not MIN_FPS <= settings.fps <= MAX_FPS:
        raise InvalidExportSettingsError("fps", settings.fps)

    aspect_ratio = settings.aspect_ratio or DEFAULT_ASPECT_RATIO
    if aspect_ratio not in ASPECT_RATIOS:
        raise InvalidExportSettingsError("aspectRatio", settings.aspect_ratio)

    width, height = RESOLUTIONS[settings.resolution]
    if aspect_ratio == "horizontal":
        width, height = height, width

    profile = QUALITY_PROFILES[settings.quality]
    return OutputSettings(
        width=width,
        height=height,
        fps=settings.fps,
        crf=profile.crf,
        preset=QUICK_PRESET if settings.quick else DEFAULT_PRESET,
        video_bitrate=profile.video_bitrate,
        audio_bitrate=profile.audio_bitrate,
    )
