"""
Tests for timeline validation and auto-correction.

Test cases:
1. Settings enumerations and fps bounds
2. Track rules (empty, duplicates, kinds, names)
3. Asset references (UUID ids, external URLs, text exemption)
4. Range corrections and their invariants
5. Overlaps are warnings only
6. Idempotency
"""

import pytest

from conftest import ASSET_ID_A, make_element
from timeline_export.render.timeline import (
    MIN_DURATION_MS,
    ExportSettings,
    ExternalAsset,
    Track,
)
from timeline_export.render.validator import MAX_ELEMENTS, MAX_TRACKS, validate_timeline


class TestSettingsRules:
    """Export settings are checked, never corrected."""

    @pytest.mark.parametrize("fps", [23, 61, 29.97, "30"])
    def test_out_of_range_fps_is_error(self, tracks, fps):
        result = validate_timeline(tracks, [make_element("v1")], ExportSettings(fps=fps))
        assert not result.valid
        assert any("fps" in e for e in result.errors)

    def test_unknown_resolution_and_quality(self, tracks):
        result = validate_timeline(
            tracks, [make_element("v1")], ExportSettings(resolution="2k", quality="ultra")
        )
        assert len(result.errors) == 2

    def test_valid_settings(self, tracks, export_settings):
        result = validate_timeline(tracks, [make_element("v1")], export_settings)
        assert result.valid
        assert result.errors == []


class TestTrackRules:
    def test_no_tracks(self, export_settings):
        result = validate_timeline([], [], export_settings)
        assert not result.valid
        assert "No tracks provided" in result.errors

    def test_too_many_tracks(self, export_settings):
        tracks = [Track(id=f"t{i}", index=i, kind="video", name=f"T{i}") for i in range(MAX_TRACKS + 1)]
        result = validate_timeline(tracks, [], export_settings)
        assert any("Too many tracks" in e for e in result.errors)

    def test_duplicate_id_is_error_duplicate_index_is_warning(self, export_settings):
        tracks = [
            Track(id="a", index=0, kind="video", name="A"),
            Track(id="a", index=1, kind="video", name="A2"),
            Track(id="b", index=1, kind="audio", name="B"),
        ]
        result = validate_timeline(tracks, [], export_settings)
        assert any("Duplicate track id" in e for e in result.errors)
        assert any("Duplicate track index" in w for w in result.warnings)

    def test_unknown_kind_and_missing_name(self, export_settings):
        tracks = [
            Track(id="a", index=0, kind="hologram", name="A"),
            Track(id="b", index=1, kind="video"),
        ]
        result = validate_timeline(tracks, [], export_settings)
        assert any("unknown type 'hologram'" in e for e in result.errors)
        assert any("has no name" in w for w in result.warnings)
        assert not any("has no name" in e for e in result.errors)

    def test_element_on_unknown_track(self, tracks, export_settings):
        result = validate_timeline(tracks, [make_element("v1", track_id="nope")], export_settings)
        assert any("unknown track nope" in e for e in result.errors)


class TestAssetRules:
    def test_internal_id_must_be_uuid(self, tracks, export_settings):
        result = validate_timeline(
            tracks, [make_element("v1", asset_id="not-a-uuid")], export_settings
        )
        assert any("invalid asset id" in e for e in result.errors)

    def test_media_without_asset(self, tracks, export_settings):
        result = validate_timeline(tracks, [make_element("v1", asset_id=None)], export_settings)
        assert any("has no asset" in e for e in result.errors)

    def test_external_asset_url(self, tracks, export_settings):
        good = make_element(
            "v1", asset_id=None, external_asset=ExternalAsset(url="https://cdn.example.com/a.mp4")
        )
        bad = make_element("v2", asset_id=None, external_asset=ExternalAsset(url="ftp:/broken"))
        result = validate_timeline(tracks, [good, bad], export_settings)
        assert len(result.errors) == 1
        assert "v2" in result.errors[0]

    def test_text_is_exempt_but_empty_text_warns(self, tracks, export_settings):
        elements = [
            make_element("t1", kind="text", track_id="track-text", properties={"text": "Hello"}),
            make_element("t2", kind="caption", track_id="track-text", start=5000, end=6000),
        ]
        result = validate_timeline(tracks, elements, export_settings)
        assert result.valid
        assert any("t2 is empty" in w for w in result.warnings)


class TestRangeRules:
    def test_end_not_after_start_is_error(self, tracks, export_settings):
        """A zero-length element cannot be fixed and rejects the timeline."""
        result = validate_timeline(
            tracks, [make_element("v1", start=1000, end=1000)], export_settings
        )
        assert not result.valid
        assert any("not after start time" in e for e in result.errors)

    def test_short_duration_is_extended(self, tracks, export_settings):
        element = make_element("v1", start=1000, end=1040)
        result = validate_timeline(tracks, [element], export_settings)

        assert result.valid
        corrected = result.corrected_elements[0]
        assert corrected.timeline_end_ms == 1000 + MIN_DURATION_MS
        assert element.timeline_end_ms == 1040, "input must not be mutated"
        assert any("extended" in w for w in result.warnings)

    def test_negative_start_is_clamped(self, tracks, export_settings):
        result = validate_timeline(tracks, [make_element("v1", start=-500, end=3000)], export_settings)
        assert result.valid
        assert result.corrected_elements[0].timeline_start_ms == 0
        assert any("clamped to 0" in w for w in result.warnings)

    def test_too_long_is_error(self, tracks, export_settings):
        result = validate_timeline(
            tracks, [make_element("v1", end=5 * 60 * 60 * 1000)], export_settings
        )
        assert any("exceeds maximum" in e for e in result.errors)

    def test_too_many_elements(self, tracks, export_settings):
        elements = [make_element(f"v{i}", start=i * 10, end=i * 10 + 200) for i in range(MAX_ELEMENTS + 1)]
        result = validate_timeline(tracks, elements, export_settings)
        assert any("Too many elements" in e for e in result.errors)

    def test_non_positive_speed_is_error(self, tracks, export_settings):
        result = validate_timeline(tracks, [make_element("v1", speed=0)], export_settings)
        assert any("invalid speed" in e for e in result.errors)

    @pytest.mark.parametrize(
        "source_start, source_end",
        [(-200, 30), (500, 550), (None, 40), (0, 5000)],
    )
    def test_source_trim_invariants(self, tracks, export_settings, source_start, source_end):
        element = make_element("v1", source_start_ms=source_start, source_end_ms=source_end)
        result = validate_timeline(tracks, [element], export_settings)

        assert result.valid
        corrected = result.corrected_elements[0]
        assert corrected.source_start_ms >= 0
        assert corrected.source_end_ms - corrected.source_start_ms >= MIN_DURATION_MS

    def test_source_end_before_start_is_error(self, tracks, export_settings):
        element = make_element("v1", source_start_ms=2000, source_end_ms=1000)
        result = validate_timeline(tracks, [element], export_settings)
        assert any("source end" in e for e in result.errors)

    def test_duration_floor_holds_for_every_element(self, tracks, export_settings):
        elements = [
            make_element("a", start=0, end=1),
            make_element("b", start=-50, end=20),
            make_element("c", start=300, end=399),
            make_element("d", start=0, end=8000),
        ]
        result = validate_timeline(tracks, elements, export_settings)
        assert result.valid
        for element in result.corrected_elements:
            assert element.timeline_end_ms - element.timeline_start_ms >= MIN_DURATION_MS


class TestOverlaps:
    def test_same_track_overlap_is_warning_only(self, tracks, export_settings):
        elements = [
            make_element("v1", start=0, end=4000),
            make_element("v2", start=3000, end=6000),
        ]
        result = validate_timeline(tracks, elements, export_settings)
        assert result.valid
        assert any("overlap by 1000ms" in w for w in result.warnings)

    def test_different_tracks_do_not_overlap(self, tracks, export_settings):
        elements = [
            make_element("v1", start=0, end=4000),
            make_element("a1", kind="audio", track_id="track-audio", start=0, end=4000),
        ]
        result = validate_timeline(tracks, elements, export_settings)
        assert not any("overlap" in w for w in result.warnings)


class TestIdempotency:
    def test_revalidating_corrected_elements_changes_nothing(self, tracks, export_settings):
        elements = [
            make_element("a", start=-100, end=30),
            make_element("b", start=500, end=520, source_start_ms=-10, source_end_ms=20),
            make_element("c", start=1000, end=4000, opacity=1.5, volume=-1),
        ]
        first = validate_timeline(tracks, elements, export_settings)
        second = validate_timeline(tracks, first.corrected_elements, export_settings)

        assert first.valid and second.valid
        assert second.corrected_elements == first.corrected_elements
        assert not any(
            "clamped" in w or "extended" in w for w in second.warnings
        ), "no further corrections expected"

    def test_to_dict_shape(self, tracks, export_settings):
        result = validate_timeline(tracks, [make_element("v1", asset_id=ASSET_ID_A)], export_settings)
        data = result.to_dict()
        assert data["valid"] is True
        assert data["correctedElements"][0]["timelineEndMs"] == 5000
