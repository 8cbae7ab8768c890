"""Typed filter graph and its FFmpeg `-filter_complex` serializer.

The compiler builds a FilterGraph out of FilterNodes; the executor turns it
into command-line text with `serialize_filter_graph`. Keeping the two apart
lets the compiler be tested by asserting on node kinds and labels.

Escaping follows FFmpeg's two levels: option values escape ``\\ ' :`` and
graph-level quoting protects ``[ ] , ;`` and whitespace.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

FINAL_VIDEO = "final_video"
FINAL_AUDIO = "final_audio"

_GRAPH_SPECIAL = set("[],;'\\ \t")


class NodeKind(str, Enum):
    CANVAS = "canvas"
    VIDEO_CHAIN = "video_chain"
    OVERLAY = "overlay"
    TEXT = "text"
    AUDIO_CHAIN = "audio_chain"
    SILENCE = "silence"
    AUDIO_CONCAT = "audio_concat"
    AUDIO_DELAY = "audio_delay"
    AUDIO_MIX = "audio_mix"


@dataclass
class Filter:
    """One FFmpeg filter with ordered options.

    Options with a None key are positional (``scale=1280:720``).
    """

    name: str
    options: list[tuple[str | None, Any]] = field(default_factory=list)

    @classmethod
    def of(cls, name: str, *positional: Any, **options: Any) -> "Filter":
        opts: list[tuple[str | None, Any]] = [(None, v) for v in positional]
        opts.extend((k, v) for k, v in options.items() if v is not None)
        return cls(name, opts)

    def option(self, key: str) -> Any:
        for k, v in self.options:
            if k == key:
                return v
        return None


@dataclass
class FilterNode:
    """A labelled filter chain: ``[in1][in2]f1,f2[label]``."""

    label: str
    inputs: list[str]
    filters: list[Filter]
    kind: NodeKind
    element_id: str | None = None
    # Timeline window in ms this node is active in, when it belongs to one element.
    window: tuple[int, int] | None = None

    def filter_names(self) -> list[str]:
        return [f.name for f in self.filters]

    def find(self, name: str) -> Filter | None:
        for f in self.filters:
            if f.name == name:
                return f
        return None


@dataclass
class GraphInput:
    """An FFmpeg input: a local file or a lavfi source, with input options."""

    source: str
    options: list[str] = field(default_factory=list)
    lavfi: bool = False

    def to_args(self) -> list[str]:
        args = list(self.options)
        if self.lavfi:
            args += ["-f", "lavfi"]
        args += ["-i", self.source]
        return args


@dataclass
class FilterGraph:
    inputs: list[GraphInput]
    nodes: list[FilterNode]
    duration_ms: int
    video_output: str = FINAL_VIDEO
    audio_output: str = FINAL_AUDIO

    @property
    def duration_s(self) -> float:
        return self.duration_ms / 1000

    def node(self, label: str) -> FilterNode:
        for n in self.nodes:
            if n.label == label:
                return n
        raise KeyError(label)

    def nodes_of(self, kind: NodeKind) -> list[FilterNode]:
        return [n for n in self.nodes if n.kind == kind]

    def iter_filters(self) -> Iterator[Filter]:
        for n in self.nodes:
            yield from n.filters

    def count_filter(self, name: str) -> int:
        return sum(1 for f in self.iter_filters() if f.name == name)


def format_number(value: float) -> str:
    """Render numbers without float noise: 1.0 -> '1', 0.3333333 -> '0.333333'."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def escape_option_value(value: str) -> str:
    """First level: escape characters special to the filter option parser."""
    return value.replace("\\", "\\\\").replace("'", "\\'").replace(":", "\\:")


def quote_graph_value(value: str) -> str:
    """Second level: quote for the filtergraph parser when needed."""
    if not value or not any(c in _GRAPH_SPECIAL for c in value):
        return value
    return "'" + value.replace("'", "'\\''") + "'"


def _format_value(value: Any) -> str:
    if isinstance(value, (int, float)):
        return format_number(value)
    return quote_graph_value(escape_option_value(str(value)))


def serialize_filter(f: Filter) -> str:
    if not f.options:
        return f.name
    parts = [_format_value(v) if k is None else f"{k}={_format_value(v)}" for k, v in f.options]
    return f"{f.name}=" + ":".join(parts)


def serialize_node(node: FilterNode) -> str:
    inputs = "".join(f"[{label}]" for label in node.inputs)
    chain = ",".join(serialize_filter(f) for f in node.filters)
    return f"{inputs}{chain}[{node.label}]"


def serialize_filter_graph(graph: FilterGraph) -> str:
    """Render the graph as a single `-filter_complex` program."""
    return ";".join(serialize_node(n) for n in graph.nodes)
