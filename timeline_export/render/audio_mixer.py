"""
Audio graph construction for timeline exports.

This module handles:
- Per-element audio chains (source trim, tempo, volume, format)
- Silence generation for timelines without audio
- Silence padding for a single partial-coverage element
- Multi-element mixing onto a bed built from the earliest element, with per-element delays
"""

import logging
from dataclasses import dataclass

from timeline_export.render.filter_graph import FINAL_AUDIO, Filter, FilterNode, NodeKind
from timeline_export.render.timeline import MIN_DURATION_MS

logger = logging.getLogger(__name__)

ATEMPO_MIN = 0.5
ATEMPO_MAX = 2.0


@dataclass
class AudioSource:
    """One element's audio, bound to a graph input."""

    element_id: str
    input_index: int
    start_ms: int
    end_ms: int
    source_start_ms: int | None = None
    source_end_ms: int | None = None
    speed: float = 1.0
    volume: float = 1.0

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


def build_atempo_filters(speed: float) -> list[Filter]:
    """Split a speed factor into atempo stages within [0.5, 2.0]."""
    filters: list[Filter] = []
    if speed == 1.0:
        return filters
    while speed > ATEMPO_MAX:
        filters.append(Filter.of("atempo", ATEMPO_MAX))
        speed /= ATEMPO_MAX
    while speed < ATEMPO_MIN:
        filters.append(Filter.of("atempo", ATEMPO_MIN))
        speed /= ATEMPO_MIN
    filters.append(Filter.of("atempo", round(speed, 6)))
    return filters


class AudioMixer:
    """
    Builds the audio half of the filter graph.

    Supports:
    - Pure silence when the timeline has no audio
    - Pass-through of a single element covering the whole timeline
    - Silence segments + concat for a single partial element
    - Earliest element as bed (lead silence + concat when it starts late),
      then adelay + two-input amix folding for the rest
    """

    def __init__(self, total_duration_ms: int, sample_rate: int = 48000):
        self.total_duration_ms = total_duration_ms
        self.sample_rate = sample_rate
        self._silence_count = 0

    def build(self, sources: list[AudioSource]) -> list[FilterNode]:
        """Return the audio nodes; the last one is labelled FINAL_AUDIO."""
        sources = sorted(sources, key=lambda s: (s.start_ms, s.element_id))
        logger.info(f"[AUDIO MIX] Processing {len(sources)} audio source(s)")

        if not sources:
            return [self._silence(self.total_duration_ms, FINAL_AUDIO)]

        if len(sources) == 1:
            source = sources[0]
            if source.start_ms <= 0 and source.end_ms >= self.total_duration_ms:
                return [self._chain(source, FINAL_AUDIO)]
            return self._pad_single(source)

        return self._mix(sources)

    def _silence(self, duration_ms: int, label: str | None = None) -> FilterNode:
        if label is None:
            label = f"silence{self._silence_count}"
            self._silence_count += 1
        return FilterNode(
            label=label,
            inputs=[],
            filters=[
                Filter.of(
                    "anullsrc", channel_layout="stereo", sample_rate=self.sample_rate
                ),
                Filter.of("atrim", duration=duration_ms / 1000),
            ],
            kind=NodeKind.SILENCE,
        )

    def _chain(self, source: AudioSource, label: str, pad_to_ms: int | None = None) -> FilterNode:
        """Trim, retime and level one element, bounded to its own duration."""
        filters: list[Filter] = []
        if source.source_start_ms is not None or source.source_end_ms is not None:
            trim_start = max(0, source.source_start_ms or 0)
            trim_duration = None
            if source.source_end_ms is not None:
                trim_duration = max(source.source_end_ms - trim_start, MIN_DURATION_MS) / 1000
            filters.append(Filter.of("atrim", start=trim_start / 1000, duration=trim_duration))
        filters.append(Filter.of("asetpts", "PTS-STARTPTS"))
        filters.extend(build_atempo_filters(source.speed))
        if source.volume != 1.0:
            filters.append(Filter.of("volume", round(source.volume, 4)))
        filters.append(
            Filter.of(
                "aformat",
                sample_fmts="fltp",
                sample_rates=self.sample_rate,
                channel_layouts="stereo",
            )
        )
        duration_s = source.duration_ms / 1000
        filters.append(Filter.of("atrim", duration=duration_s))
        if pad_to_ms is not None:
            filters.append(Filter.of("apad", whole_dur=pad_to_ms / 1000))
            if pad_to_ms != source.duration_ms:
                filters.append(Filter.of("atrim", duration=pad_to_ms / 1000))
        filters.append(Filter.of("asetpts", "PTS-STARTPTS"))

        return FilterNode(
            label=label,
            inputs=[f"{source.input_index}:a"],
            filters=filters,
            kind=NodeKind.AUDIO_CHAIN,
            element_id=source.element_id,
            window=(source.start_ms, source.end_ms),
        )

    def _pad_single(self, source: AudioSource) -> list[FilterNode]:
        nodes: list[FilterNode] = []
        segments: list[str] = []
        if source.start_ms > 0:
            lead = self._silence(source.start_ms)
            nodes.append(lead)
            segments.append(lead.label)

        chain = self._chain(source, "a0", pad_to_ms=source.duration_ms)
        nodes.append(chain)
        segments.append(chain.label)

        if source.end_ms < self.total_duration_ms:
            tail = self._silence(self.total_duration_ms - source.end_ms)
            nodes.append(tail)
            segments.append(tail.label)

        nodes.append(
            FilterNode(
                label=FINAL_AUDIO,
                inputs=segments,
                filters=[Filter.of("concat", n=len(segments), v=0, a=1)],
                kind=NodeKind.AUDIO_CONCAT,
            )
        )
        return nodes

    def _mix(self, sources: list[AudioSource]) -> list[FilterNode]:
        nodes: list[FilterNode] = []
        first = sources[0]
        if first.start_ms <= 0:
            # The earliest element already starts the timeline: pad it into the bed.
            bed = self._chain(first, "a0", pad_to_ms=self.total_duration_ms)
        else:
            lead = self._silence(first.start_ms)
            chain = self._chain(first, "a0", pad_to_ms=self.total_duration_ms - first.start_ms)
            nodes.extend([lead, chain])
            bed = FilterNode(
                label="abed",
                inputs=[lead.label, chain.label],
                filters=[Filter.of("concat", n=2, v=0, a=1)],
                kind=NodeKind.AUDIO_CONCAT,
            )
        nodes.append(bed)
        running = bed.label
        remaining = sources[1:]

        for i, source in enumerate(remaining, start=1):
            chain = self._chain(source, f"a{i}")
            nodes.append(chain)
            track = chain.label
            if source.start_ms > 0:
                delayed = FilterNode(
                    label=f"a{i}d",
                    inputs=[track],
                    filters=[Filter.of("adelay", delays=source.start_ms, all=1)],
                    kind=NodeKind.AUDIO_DELAY,
                    element_id=source.element_id,
                    window=(source.start_ms, source.end_ms),
                )
                nodes.append(delayed)
                track = delayed.label

            is_last = i == len(remaining)
            mixed = FilterNode(
                label=FINAL_AUDIO if is_last else f"amix{i}",
                inputs=[running, track],
                filters=[
                    Filter.of(
                        "amix",
                        inputs=2,
                        duration="first",
                        dropout_transition=0,
                        normalize=0,
                    )
                ],
                kind=NodeKind.AUDIO_MIX,
            )
            nodes.append(mixed)
            running = mixed.label

        return nodes
