from timeline_export.render.audio_mixer import AudioMixer
from timeline_export.render.compiler import compile_filter_graph
from timeline_export.render.executor import TranscodeExecutor
from timeline_export.render.filter_graph import FilterGraph, serialize_filter_graph
from timeline_export.render.output_settings import OutputSettings, resolve_output_settings
from timeline_export.render.validator import validate_timeline

__all__ = [
    "AudioMixer",
    "FilterGraph",
    "OutputSettings",
    "TranscodeExecutor",
    "compile_filter_graph",
    "resolve_output_settings",
    "serialize_filter_graph",
    "validate_timeline",
]
