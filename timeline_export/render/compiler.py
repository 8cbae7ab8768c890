"""Compile a validated timeline into a FilterGraph.

Steps:
1. Total duration = latest element end, floored at MIN_TIMELINE_DURATION_MS.
2. Base canvas from a lavfi color source (always the last graph input).
3. One transform chain per visual element, in ascending start order.
4. Each chain is delayed into place with transparent tpad padding.
5. Chains are folded onto the canvas with two-input overlays.
6. Text and captions are drawn on the running composite.
7. Audio is built independently by AudioMixer.

The compiler is pure: same inputs, same graph. Elements whose asset did not
download are dropped here.
"""

import logging
from dataclasses import dataclass

from timeline_export.render.audio_mixer import AudioMixer, AudioSource
from timeline_export.render.filter_graph import (
    FINAL_AUDIO,
    FINAL_VIDEO,
    Filter,
    FilterGraph,
    FilterNode,
    GraphInput,
    NodeKind,
)
from timeline_export.render.output_settings import OutputSettings
from timeline_export.render.text_renderer import FontSet, TextRenderer
from timeline_export.render.timeline import (
    AUDIO_TRACK_KINDS,
    MIN_DURATION_MS,
    MIN_TIMELINE_DURATION_MS,
    ElementKind,
    TimelineElement,
    Track,
)
from timeline_export.utils.media_info import MediaInfo

logger = logging.getLogger(__name__)

CANVAS_COLOR = "black"
CANVAS_LABEL = "base"

USER_TRANSFORM_KEYS = ("crop", "size", "width", "height", "scale", "position", "rotation")


@dataclass
class _VisualPlan:
    element: TimelineElement
    input_index: int
    order: int


def compute_total_duration_ms(elements: list[TimelineElement]) -> int:
    latest = max((e.timeline_end_ms for e in elements), default=0)
    return max(latest, MIN_TIMELINE_DURATION_MS)


def _seconds(ms: float) -> float:
    return ms / 1000


class FilterGraphCompiler:
    """Turns elements + local asset paths into a FilterGraph."""

    def __init__(self, output: OutputSettings, fonts: FontSet | None = None):
        self.output = output
        self.text_renderer = TextRenderer(output, fonts)

    def compile(
        self,
        elements: list[TimelineElement],
        tracks: list[Track],
        asset_paths: dict[str, str],
        media_info: dict[str, MediaInfo] | None = None,
    ) -> FilterGraph:
        """Build the graph.

        Args:
            elements: Validated (corrected) elements.
            tracks: Tracks of the timeline, for stacking order and audio routing.
            asset_paths: Asset key -> local file path for every downloaded asset.
            media_info: Optional probe results keyed by local path.

        Returns:
            FilterGraph whose outputs are FINAL_VIDEO and FINAL_AUDIO.
        """
        track_by_id = {t.id: t for t in tracks}
        total_ms = compute_total_duration_ms(elements)

        available: list[TimelineElement] = []
        for element in elements:
            if element.is_media and asset_paths.get(element.asset_key or "") is None:
                logger.warning(
                    f"[COMPILE] Dropping {element.kind} element {element.id}: asset unavailable"
                )
                continue
            available.append(element)

        visuals = sorted(
            (e for e in available if e.is_visual and not self._on_audio_track(track_by_id, e)),
            key=lambda e: (e.timeline_start_ms, -self._track_index(track_by_id, e)),
        )
        audio_elements = [
            e for e in available if self._carries_audio(e, track_by_id, asset_paths, media_info)
        ]
        texts = sorted(
            (e for e in available if e.is_text),
            key=lambda e: (e.timeline_start_ms, -self._track_index(track_by_id, e)),
        )

        inputs: list[GraphInput] = []
        input_index: dict[str, int] = {}
        for element in [*visuals, *sorted(audio_elements, key=lambda e: e.timeline_start_ms)]:
            path = asset_paths[element.asset_key]
            if path not in input_index:
                input_index[path] = len(inputs)
                options = ["-ignore_loop", "0"] if element.kind == ElementKind.GIF.value else []
                inputs.append(GraphInput(source=path, options=options))

        canvas_input = len(inputs)
        inputs.append(
            GraphInput(
                source=(
                    f"color=c={CANVAS_COLOR}:s={self.output.width}x{self.output.height}"
                    f":r={self.output.fps}:d={_seconds(total_ms)}"
                ),
                lavfi=True,
            )
        )

        nodes: list[FilterNode] = [self._canvas_node(canvas_input, total_ms)]
        running = CANVAS_LABEL

        plans = [
            _VisualPlan(e, input_index[asset_paths[e.asset_key]], i) for i, e in enumerate(visuals)
        ]
        for plan in plans:
            chain = self._visual_chain(plan)
            if chain is None:
                continue
            nodes.append(chain)
            overlay = self._overlay_node(running, chain, plan)
            nodes.append(overlay)
            running = overlay.label

        for i, element in enumerate(texts):
            if not element.text.strip():
                continue
            node = FilterNode(
                label=f"text{i}",
                inputs=[running],
                filters=[self.text_renderer.build_drawtext(element)],
                kind=NodeKind.TEXT,
                element_id=element.id,
                window=(element.timeline_start_ms, element.timeline_end_ms),
            )
            nodes.append(node)
            running = node.label

        # The last video node becomes the final output, whatever produced it.
        nodes[-1].label = FINAL_VIDEO

        mixer = AudioMixer(total_ms, self.output.audio_sample_rate)
        sources = [
            AudioSource(
                element_id=e.id,
                input_index=input_index[asset_paths[e.asset_key]],
                start_ms=e.timeline_start_ms,
                end_ms=e.timeline_end_ms,
                source_start_ms=e.source_start_ms,
                source_end_ms=e.source_end_ms,
                speed=e.speed,
                volume=e.volume,
            )
            for e in audio_elements
            if e.speed > 0 and e.duration_ms > 0
        ]
        nodes.extend(mixer.build(sources))

        logger.info(
            f"[COMPILE] {len(inputs)} input(s), {len(nodes)} node(s), "
            f"{len(plans)} visual, {len(texts)} text, {len(sources)} audio, {total_ms}ms"
        )
        return FilterGraph(
            inputs=inputs,
            nodes=nodes,
            duration_ms=total_ms,
            video_output=FINAL_VIDEO,
            audio_output=FINAL_AUDIO,
        )

    @staticmethod
    def _track_index(track_by_id: dict[str, Track], element: TimelineElement) -> int:
        track = track_by_id.get(element.track_id)
        return track.index if track else 0

    @staticmethod
    def _on_audio_track(track_by_id: dict[str, Track], element: TimelineElement) -> bool:
        track = track_by_id.get(element.track_id)
        return track is not None and track.kind in AUDIO_TRACK_KINDS

    @staticmethod
    def _carries_audio(
        element: TimelineElement,
        track_by_id: dict[str, Track],
        asset_paths: dict[str, str],
        media_info: dict[str, MediaInfo] | None,
    ) -> bool:
        if element.kind == ElementKind.VIDEO.value:
            # Video clips contribute sound only when placed on an audio lane.
            track = track_by_id.get(element.track_id)
            if track is None or track.kind not in AUDIO_TRACK_KINDS:
                return False
        elif element.kind != ElementKind.AUDIO.value:
            return False

        if media_info is not None:
            info = media_info.get(asset_paths[element.asset_key])
            if info is not None and not info.has_audio:
                logger.info(f"[COMPILE] Element {element.id} has no audio stream; skipped in mix")
                return False
        return True

    def _canvas_node(self, canvas_input: int, total_ms: int) -> FilterNode:
        return FilterNode(
            label=CANVAS_LABEL,
            inputs=[f"{canvas_input}:v"],
            filters=[
                Filter.of("trim", duration=_seconds(total_ms)),
                Filter.of("fps", fps=self.output.fps),
                Filter.of("format", "yuv420p"),
                Filter.of("setpts", "PTS-STARTPTS"),
            ],
            kind=NodeKind.CANVAS,
            window=(0, total_ms),
        )

    def _visual_chain(self, plan: _VisualPlan) -> FilterNode | None:
        element = plan.element
        duration_ms = element.duration_ms
        if duration_ms <= 0 or element.speed <= 0:
            logger.warning(
                f"[COMPILE] Skipping element {element.id}: non-positive duration "
                f"({duration_ms}ms, speed {element.speed})"
            )
            return None

        filters: list[Filter] = []
        if element.kind == ElementKind.IMAGE.value:
            filters.append(Filter.of("loop", loop=-1, size=1, start=0))
            filters.append(Filter.of("setpts", f"N/({self.output.fps}*TB)"))
        else:
            if element.has_source_trim:
                trim_start = max(0, element.source_start_ms or 0)
                trim_duration = None
                if element.source_end_ms is not None:
                    source_ms = element.source_end_ms - trim_start
                    if source_ms <= 0:
                        logger.warning(f"[COMPILE] Skipping element {element.id}: empty source range")
                        return None
                    trim_duration = _seconds(max(source_ms, MIN_DURATION_MS))
                filters.append(Filter.of("trim", start=_seconds(trim_start), duration=trim_duration))
            if element.speed != 1.0:
                filters.append(Filter.of("setpts", f"(PTS-STARTPTS)/{element.speed}"))
            else:
                filters.append(Filter.of("setpts", "PTS-STARTPTS"))
            filters.append(Filter.of("fps", fps=self.output.fps))

        filters.extend(self._geometry_filters(element))

        filters.append(Filter.of("format", "yuva420p"))
        if element.opacity < 1.0:
            filters.append(Filter.of("colorchannelmixer", aa=round(element.opacity, 4)))

        duration_s = _seconds(duration_ms)
        filters.append(Filter.of("trim", duration=duration_s))
        filters.append(Filter.of("setpts", "PTS-STARTPTS"))

        half_ms = duration_ms / 2
        if element.transition_in and element.transition_in.duration_ms > 0:
            fade_s = _seconds(min(element.transition_in.duration_ms, half_ms))
            filters.append(Filter.of("fade", t="in", st=0, d=fade_s, alpha=1))
        if element.transition_out and element.transition_out.duration_ms > 0:
            fade_s = _seconds(min(element.transition_out.duration_ms, half_ms))
            filters.append(Filter.of("fade", t="out", st=duration_s - fade_s, d=fade_s, alpha=1))

        if element.timeline_start_ms > 0:
            filters.append(
                Filter.of(
                    "tpad",
                    start_duration=_seconds(element.timeline_start_ms),
                    start_mode="add",
                    color="black@0",
                )
            )

        return FilterNode(
            label=f"v{plan.order}",
            inputs=[f"{plan.input_index}:v"],
            filters=filters,
            kind=NodeKind.VIDEO_CHAIN,
            element_id=element.id,
            window=(element.timeline_start_ms, element.timeline_end_ms),
        )

    def _geometry_filters(self, element: TimelineElement) -> list[Filter]:
        props = element.properties
        if not any(props.get(k) is not None for k in USER_TRANSFORM_KEYS):
            # Fit-and-center-crop to the exact output frame.
            w, h = self.output.width, self.output.height
            return [
                Filter.of("scale", w, h, force_original_aspect_ratio="increase"),
                Filter.of("crop", w, h),
                Filter.of("setsar", 1),
            ]

        filters: list[Filter] = []
        crop = props.get("crop")
        if isinstance(crop, dict):
            if "width" in crop and "height" in crop:
                filters.append(
                    Filter.of(
                        "crop",
                        int(crop["width"]),
                        int(crop["height"]),
                        int(crop.get("x", 0)),
                        int(crop.get("y", 0)),
                    )
                )
            else:
                top, right = float(crop.get("top", 0)), float(crop.get("right", 0))
                bottom, left = float(crop.get("bottom", 0)), float(crop.get("left", 0))
                if top or right or bottom or left:
                    filters.append(
                        Filter.of(
                            "crop",
                            f"iw*{1 - left - right:.4f}",
                            f"ih*{1 - top - bottom:.4f}",
                            f"iw*{left:.4f}",
                            f"ih*{top:.4f}",
                        )
                    )

        size = props.get("size") if isinstance(props.get("size"), dict) else {}
        width = size.get("width", props.get("width"))
        height = size.get("height", props.get("height"))
        scale = props.get("scale")
        if width and height:
            filters.append(Filter.of("scale", int(width), int(height)))
        elif scale is not None and float(scale) != 1.0:
            filters.append(Filter.of("scale", f"iw*{float(scale)}", f"ih*{float(scale)}"))

        rotation = float(props.get("rotation") or 0)
        if abs(rotation) > 0.01:
            filters.append(Filter.of("format", "rgba"))
            filters.append(
                Filter.of(
                    "rotate",
                    f"{rotation}*PI/180",
                    ow="hypot(iw,ih)",
                    oh="hypot(iw,ih)",
                    fillcolor="none",
                )
            )
        filters.append(Filter.of("setsar", 1))
        return filters

    def _overlay_node(self, running: str, chain: FilterNode, plan: _VisualPlan) -> FilterNode:
        position = plan.element.properties.get("position") or {}
        x = position.get("x", 0) if isinstance(position, dict) else 0
        y = position.get("y", 0) if isinstance(position, dict) else 0
        return FilterNode(
            label=f"vcomp{plan.order}",
            inputs=[running, chain.label],
            filters=[Filter.of("overlay", x=x, y=y, eof_action="pass", format="auto")],
            kind=NodeKind.OVERLAY,
            element_id=plan.element.id,
            window=chain.window,
        )


def compile_filter_graph(
    elements: list[TimelineElement],
    tracks: list[Track],
    output: OutputSettings,
    asset_paths: dict[str, str],
    media_info: dict[str, MediaInfo] | None = None,
    fonts: FontSet | None = None,
) -> FilterGraph:
    """Compile a timeline into a FilterGraph; see FilterGraphCompiler."""
    return FilterGraphCompiler(output, fonts).compile(elements, tracks, asset_paths, media_info)
