"""Timeline validation and auto-correction.

Runs independent rule groups over the submitted timeline and merges their
findings:
- settings: resolution/quality/aspect enumerations, fps bounds
- tracks: presence, count ceiling, duplicate ids/indices, kinds, names
- assets: every media element must reference something we can fetch
- ranges: element count, durations, negative starts, source trims
- overlaps: same-track overlaps are legal stacking and only warned about

Hard problems are errors; fixable ones are corrected on a copy of the element
and reported as warnings. Validating the corrected output again yields the
same elements.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from timeline_export.render.output_settings import (
    ASPECT_RATIOS,
    MAX_FPS,
    MIN_FPS,
    QUALITY_PROFILES,
    RESOLUTIONS,
)
from timeline_export.render.timeline import (
    ELEMENT_KINDS,
    MIN_DURATION_MS,
    TRACK_KINDS,
    ExportSettings,
    TimelineElement,
    Track,
)

logger = logging.getLogger(__name__)

MAX_TRACKS = 50
MAX_ELEMENTS = 500
MAX_ELEMENT_DURATION_MS = 4 * 60 * 60 * 1000

ASSET_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


@dataclass
class ValidationIssue:
    """A detected timeline issue."""

    rule: str
    severity: str  # "error", "warning"
    message: str
    element_id: str | None = None
    track_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule,
            "severity": self.severity,
            "message": self.message,
            "element_id": self.element_id,
            "track_id": self.track_id,
        }


@dataclass
class ValidationResult:
    issues: list[ValidationIssue] = field(default_factory=list)
    corrected_elements: list[TimelineElement] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "warning"]

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "correctedElements": [e.to_dict() for e in self.corrected_elements],
        }


def is_valid_asset_id(asset_id: str) -> bool:
    return bool(ASSET_ID_PATTERN.match(asset_id))


def is_valid_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class TimelineValidator:
    """Validates one export request without touching any media."""

    def __init__(
        self,
        tracks: list[Track],
        elements: list[TimelineElement],
        settings: ExportSettings,
    ):
        self.tracks = tracks
        self.elements = elements
        self.settings = settings
        self._issues: list[ValidationIssue] = []

    def validate(self) -> ValidationResult:
        self._issues = []
        self._check_settings()
        self._check_tracks()
        self._check_assets()
        corrected = self._check_ranges()
        self._check_overlaps(corrected)

        result = ValidationResult(issues=self._issues, corrected_elements=corrected)
        if result.errors:
            logger.info(f"[VALIDATION] Rejected timeline: {len(result.errors)} error(s)")
        for warning in result.warnings:
            logger.info(f"[VALIDATION] {warning}")
        return result

    def _error(self, rule: str, message: str, **kwargs: Any) -> None:
        self._issues.append(ValidationIssue(rule=rule, severity="error", message=message, **kwargs))

    def _warn(self, rule: str, message: str, **kwargs: Any) -> None:
        self._issues.append(ValidationIssue(rule=rule, severity="warning", message=message, **kwargs))

    def _check_settings(self) -> None:
        s = self.settings
        if s.resolution not in RESOLUTIONS:
            self._error(
                "settings",
                f"Invalid resolution '{s.resolution}' (allowed: {', '.join(RESOLUTIONS)})",
            )
        if s.quality not in QUALITY_PROFILES:
            self._error(
                "settings",
                f"Invalid quality '{s.quality}' (allowed: {', '.join(QUALITY_PROFILES)})",
            )
        if isinstance(s.fps, bool) or not isinstance(s.fps, int) or not MIN_FPS <= s.fps <= MAX_FPS:
            self._error("settings", f"Invalid fps {s.fps!r} (must be an integer {MIN_FPS}-{MAX_FPS})")
        if s.aspect_ratio is not None and s.aspect_ratio not in ASPECT_RATIOS:
            self._error(
                "settings",
                f"Invalid aspect ratio '{s.aspect_ratio}' (allowed: {', '.join(ASPECT_RATIOS)})",
            )

    def _check_tracks(self) -> None:
        if not self.tracks:
            self._error("tracks", "No tracks provided")
            return
        if len(self.tracks) > MAX_TRACKS:
            self._error("tracks", f"Too many tracks ({len(self.tracks)}, max: {MAX_TRACKS})")

        seen_ids: set[str] = set()
        seen_indices: set[int] = set()
        for track in self.tracks:
            if track.id in seen_ids:
                self._error("tracks", f"Duplicate track id: {track.id}", track_id=track.id)
            seen_ids.add(track.id)

            if track.index in seen_indices:
                self._warn(
                    "tracks",
                    f"Duplicate track index {track.index} (track {track.id})",
                    track_id=track.id,
                )
            seen_indices.add(track.index)

            if track.kind not in TRACK_KINDS:
                self._error(
                    "tracks", f"Track {track.id} has unknown type '{track.kind}'", track_id=track.id
                )
            if not (track.name or "").strip():
                self._warn("tracks", f"Track {track.id} has no name", track_id=track.id)

        for element in self.elements:
            if element.track_id not in seen_ids:
                self._error(
                    "tracks",
                    f"Element {element.id} references unknown track {element.track_id}",
                    element_id=element.id,
                )

    def _check_assets(self) -> None:
        for element in self.elements:
            if element.kind not in ELEMENT_KINDS:
                self._error(
                    "assets",
                    f"Element {element.id} has unknown type '{element.kind}'",
                    element_id=element.id,
                )
                continue

            if element.is_text:
                if not element.text.strip():
                    self._warn("assets", f"Text element {element.id} is empty", element_id=element.id)
                continue

            if element.is_external:
                url = element.external_asset.url if element.external_asset else ""
                if not is_valid_url(url):
                    self._error(
                        "assets",
                        f"Element {element.id} has an invalid external asset URL: {url!r}",
                        element_id=element.id,
                    )
            elif not element.asset_id:
                self._error("assets", f"Element {element.id} has no asset", element_id=element.id)
            elif not is_valid_asset_id(element.asset_id):
                self._error(
                    "assets",
                    f"Element {element.id} has an invalid asset id: {element.asset_id}",
                    element_id=element.id,
                )

    def _check_ranges(self) -> list[TimelineElement]:
        if len(self.elements) > MAX_ELEMENTS:
            self._error("ranges", f"Too many elements ({len(self.elements)}, max: {MAX_ELEMENTS})")

        corrected: list[TimelineElement] = []
        for element in self.elements:
            corrected.append(self._correct_element(element))
        return corrected

    def _correct_element(self, element: TimelineElement) -> TimelineElement:
        eid = element.id
        start, end = element.timeline_start_ms, element.timeline_end_ms
        changes: dict[str, Any] = {}

        if end <= start:
            self._error(
                "ranges",
                f"Element {eid} end time ({end}ms) is not after start time ({start}ms)",
                element_id=eid,
            )
            return element.copy()
        if end - start > MAX_ELEMENT_DURATION_MS:
            self._error(
                "ranges",
                f"Element {eid} duration {end - start}ms exceeds maximum {MAX_ELEMENT_DURATION_MS}ms",
                element_id=eid,
            )

        if start < 0:
            self._warn("ranges", f"Element {eid} starts before 0ms ({start}ms); clamped to 0", element_id=eid)
            start = 0
            changes["timeline_start_ms"] = start
        if end - start < MIN_DURATION_MS:
            self._warn(
                "ranges",
                f"Element {eid} duration {end - start}ms is shorter than {MIN_DURATION_MS}ms; extended",
                element_id=eid,
            )
            end = start + MIN_DURATION_MS
            changes["timeline_end_ms"] = end

        if element.has_source_trim:
            changes.update(self._correct_source_trim(element))

        if element.speed <= 0:
            self._error("ranges", f"Element {eid} has invalid speed {element.speed}", element_id=eid)
        if not 0.0 <= element.opacity <= 1.0:
            opacity = min(max(element.opacity, 0.0), 1.0)
            self._warn(
                "ranges", f"Element {eid} opacity {element.opacity} clamped to {opacity}", element_id=eid
            )
            changes["opacity"] = opacity
        if element.volume < 0:
            self._warn("ranges", f"Element {eid} volume {element.volume} clamped to 0", element_id=eid)
            changes["volume"] = 0.0

        return element.copy(**changes)

    def _correct_source_trim(self, element: TimelineElement) -> dict[str, Any]:
        eid = element.id
        changes: dict[str, Any] = {}
        source_start = element.source_start_ms
        source_end = element.source_end_ms

        if source_start is None:
            # An end-only trim starts at the head of the media.
            source_start = 0
            changes["source_start_ms"] = 0

        if source_end is not None and source_end <= source_start:
            self._error(
                "ranges",
                f"Element {eid} source end ({source_end}ms) is not after source start ({source_start}ms)",
                element_id=eid,
            )
            return changes

        if source_start < 0:
            self._warn(
                "ranges",
                f"Element {eid} source start {source_start}ms is negative; clamped to 0",
                element_id=eid,
            )
            source_start = 0
            changes["source_start_ms"] = 0

        if source_end is not None:
            if source_end - source_start < MIN_DURATION_MS:
                self._warn(
                    "ranges",
                    f"Element {eid} source range {source_end - source_start}ms is shorter than "
                    f"{MIN_DURATION_MS}ms; extended",
                    element_id=eid,
                )
                changes["source_end_ms"] = source_start + MIN_DURATION_MS
            elif source_end - source_start > MAX_ELEMENT_DURATION_MS:
                self._error(
                    "ranges",
                    f"Element {eid} source range exceeds maximum {MAX_ELEMENT_DURATION_MS}ms",
                    element_id=eid,
                )
        return changes

    def _check_overlaps(self, elements: list[TimelineElement]) -> None:
        """Same-track overlaps stack as layers; report them without blocking."""
        by_track: dict[str, list[TimelineElement]] = {}
        for element in elements:
            if element.timeline_end_ms > element.timeline_start_ms:
                by_track.setdefault(element.track_id, []).append(element)

        for track_id, track_elements in by_track.items():
            ordered = sorted(track_elements, key=lambda e: (e.timeline_start_ms, e.timeline_end_ms))
            running = ordered[0]
            for current in ordered[1:]:
                if current.timeline_start_ms < running.timeline_end_ms:
                    overlap_ms = min(running.timeline_end_ms, current.timeline_end_ms) - current.timeline_start_ms
                    self._warn(
                        "overlaps",
                        f"Elements {running.id} and {current.id} overlap by {overlap_ms}ms "
                        f"on track {track_id}; they will be stacked",
                        element_id=current.id,
                        track_id=track_id,
                    )
                if current.timeline_end_ms > running.timeline_end_ms:
                    running = current


def validate_timeline(
    tracks: list[Track],
    elements: list[TimelineElement],
    settings: ExportSettings,
) -> ValidationResult:
    """Validate a timeline and return corrected copies of its elements."""
    return TimelineValidator(tracks, elements, settings).validate()
