"""Text and caption overlays for exports.

Features:
- drawtext styling (size, color, weight, style, alignment)
- Font sizes scaled from a 1080px reference height
- Caption defaults: background box, padding, border and drop shadow
- Fade transitions as alpha expressions
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from timeline_export.config import get_settings
from timeline_export.render.filter_graph import Filter, format_number
from timeline_export.render.output_settings import OutputSettings
from timeline_export.render.timeline import ElementKind, TimelineElement

logger = logging.getLogger(__name__)

REFERENCE_HEIGHT = 1080
DEFAULT_FONT_SIZE = 24
DEFAULT_CAPTION_FONT_SIZE = 48
DEFAULT_FONT_COLOR = "white"
DEFAULT_FONT_FAMILY = "Sans"
EDGE_MARGIN = 0.05


@dataclass
class FontSet:
    """Font files per weight/style; empty entries fall back to fontconfig."""

    regular: str = ""
    bold: str = ""
    italic: str = ""
    bold_italic: str = ""

    @classmethod
    def from_settings(cls) -> "FontSet":
        settings = get_settings()
        return cls(
            regular=settings.font_regular_path,
            bold=settings.font_bold_path,
            italic=settings.font_italic_path,
            bold_italic=settings.font_bold_italic_path,
        )

    def resolve(self, bold: bool, italic: bool) -> str:
        if bold and italic:
            return self.bold_italic or self.bold or self.regular
        if bold:
            return self.bold or self.regular
        if italic:
            return self.italic or self.regular
        return self.regular


@dataclass
class TextStyle:
    """Resolved text styling for one element."""

    font_size: int = DEFAULT_FONT_SIZE
    font_color: str = DEFAULT_FONT_COLOR
    font_family: str = DEFAULT_FONT_FAMILY
    bold: bool = False
    italic: bool = False
    align: str = "center"
    box_color: str | None = None
    box_padding: int = 0
    border_color: str | None = None
    border_width: int = 0
    shadow_color: str | None = None
    shadow_offset: int = 0
    position: dict[str, Any] = field(default_factory=dict)


def normalize_color(color: str | None, default: str = DEFAULT_FONT_COLOR) -> str:
    """Convert CSS-style hex colors (#RRGGBB[AA]) to FFmpeg's 0xRRGGBB[AA]."""
    if not color:
        return default
    color = str(color).strip()
    if color.startswith("#"):
        hex_part = color[1:]
        if len(hex_part) == 3:
            hex_part = "".join(c * 2 for c in hex_part)
        return f"0x{hex_part.upper()}"
    return color


def _is_bold(weight: Any) -> bool:
    if weight is None:
        return False
    if isinstance(weight, (int, float)):
        return weight >= 600
    text = str(weight).lower()
    if text.isdigit():
        return int(text) >= 600
    return text in ("bold", "bolder", "semibold", "extrabold", "black")


class TextRenderer:
    """Builds drawtext filters for text and caption elements."""

    def __init__(self, output: OutputSettings, fonts: FontSet | None = None):
        self.output = output
        self.fonts = fonts or FontSet()
        self.scale = output.height / REFERENCE_HEIGHT

    def resolve_style(self, element: TimelineElement) -> TextStyle:
        props = element.properties
        is_caption = element.kind == ElementKind.CAPTION.value
        base_size = props.get("fontSize") or (
            DEFAULT_CAPTION_FONT_SIZE if is_caption else DEFAULT_FONT_SIZE
        )
        style = TextStyle(
            font_size=max(1, round(float(base_size) * self.scale)),
            font_color=normalize_color(props.get("fontColor") or props.get("color")),
            font_family=props.get("fontFamily") or DEFAULT_FONT_FAMILY,
            bold=_is_bold(props.get("fontWeight")),
            italic=str(props.get("fontStyle") or "").lower() == "italic",
            align=str(props.get("textAlign") or "center").lower(),
            position=props.get("position") or {},
        )

        if props.get("backgroundColor"):
            style.box_color = normalize_color(props["backgroundColor"])
            style.box_padding = round(float(props.get("padding", 8)) * self.scale)
        if props.get("borderColor") and props.get("borderWidth"):
            style.border_color = normalize_color(props["borderColor"])
            style.border_width = round(float(props["borderWidth"]) * self.scale)
        if props.get("shadowColor"):
            style.shadow_color = normalize_color(props["shadowColor"])
            style.shadow_offset = max(1, round(2 * self.scale))

        if is_caption:
            # Captions sit on a readable box with a shadow unless told otherwise.
            if style.box_color is None:
                style.box_color = "black@0.6"
                style.box_padding = round(float(props.get("padding", 12)) * self.scale)
            if style.shadow_color is None and props.get("shadow", True):
                style.shadow_color = "black@0.5"
                style.shadow_offset = max(1, round(2 * self.scale))
        return style

    def _x_expr(self, style: TextStyle) -> str | float:
        x = style.position.get("x")
        if isinstance(x, (int, float)):
            if style.align == "center":
                return f"{format_number(x)}-text_w/2"
            if style.align == "right":
                return f"{format_number(x)}-text_w"
            return x
        if style.align == "left":
            return f"w*{EDGE_MARGIN}"
        if style.align == "right":
            return f"w-text_w-w*{EDGE_MARGIN}"
        return "(w-text_w)/2"

    def _y_expr(self, style: TextStyle, is_caption: bool) -> str | float:
        y = style.position.get("y")
        if isinstance(y, (int, float)):
            return y
        if is_caption:
            return "h-text_h-h*0.1"
        return "(h-text_h)/2"

    def _alpha_expr(self, element: TimelineElement) -> str | None:
        """Linear fade in/out over the element's window, clamped to half its length."""
        start_s = element.timeline_start_ms / 1000
        end_s = element.timeline_end_ms / 1000
        half_ms = element.duration_ms / 2
        parts: list[str] = []
        if element.transition_in and element.transition_in.duration_ms > 0:
            d = min(element.transition_in.duration_ms, half_ms) / 1000
            parts.append(f"if(lt(t,{format_number(start_s + d)}),(t-{format_number(start_s)})/{format_number(d)},1)")
        if element.transition_out and element.transition_out.duration_ms > 0:
            d = min(element.transition_out.duration_ms, half_ms) / 1000
            parts.append(f"if(gt(t,{format_number(end_s - d)}),({format_number(end_s)}-t)/{format_number(d)},1)")
        if not parts:
            return None
        return "*".join(parts)

    def build_drawtext(self, element: TimelineElement) -> Filter:
        style = self.resolve_style(element)
        is_caption = element.kind == ElementKind.CAPTION.value

        font_color = style.font_color
        if element.opacity < 1.0 and "@" not in font_color:
            font_color = f"{font_color}@{format_number(element.opacity)}"

        options: list[tuple[str | None, Any]] = [("text", element.text), ("expansion", "none")]
        font_file = self.fonts.resolve(style.bold, style.italic)
        if font_file:
            options.append(("fontfile", font_file))
        else:
            face = " ".join(p for p in ("Bold" if style.bold else "", "Italic" if style.italic else "") if p)
            options.append(("font", f"{style.font_family}:style={face}" if face else style.font_family))
        options += [
            ("fontsize", style.font_size),
            ("fontcolor", font_color),
            ("x", self._x_expr(style)),
            ("y", self._y_expr(style, is_caption)),
        ]
        if style.box_color:
            options += [("box", 1), ("boxcolor", style.box_color), ("boxborderw", style.box_padding)]
        if style.border_color and style.border_width > 0:
            options += [("borderw", style.border_width), ("bordercolor", style.border_color)]
        if style.shadow_color:
            options += [
                ("shadowcolor", style.shadow_color),
                ("shadowx", style.shadow_offset),
                ("shadowy", style.shadow_offset),
            ]
        alpha = self._alpha_expr(element)
        if alpha:
            options.append(("alpha", alpha))

        start_s = format_number(element.timeline_start_ms / 1000)
        end_s = format_number(element.timeline_end_ms / 1000)
        options.append(("enable", f"between(t,{start_s},{end_s})"))

        logger.debug(f"[TEXT] {element.kind} {element.id}: size={style.font_size} align={style.align}")
        return Filter("drawtext", options)
