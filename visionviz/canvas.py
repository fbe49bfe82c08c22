"""
2D drawing surface for sandboxed animation scripts.

- Canvas: an RGB Pillow image plus a CanvasContext exposing a subset of the
  HTML canvas 2D API to scripts (``ctx.fillRect(...)``, ``ctx.fillStyle = ...``)
- Viewport: the host window size; notifies resize listeners
- draw_blocks: overlay detected blocks (and the selection) on a camera frame
"""

import logging
import math
import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont

from visionviz.errors import ScriptRuntimeError
from visionviz.frames import Frame
from visionviz.geometry import Size, bbox_to_canvas
from visionviz.sandbox import UNDEFINED, HostObject
from visionviz.schema import Block

logger = logging.getLogger(__name__)

RGBA = Tuple[int, int, int, int]
Point = Tuple[float, float]

BACKGROUND = (0, 0, 0)
ERROR_COLOR = (255, 0, 0, 255)
MAX_FONT_SIZE = 1000.0

_RGBA_FUNC = re.compile(
    r"rgba?\(\s*([\d.]+)\s*,\s*([\d.]+)\s*,\s*([\d.]+)\s*(?:,\s*([\d.]+%?)\s*)?\)",
    re.IGNORECASE,
)
_FONT_SIZE = re.compile(r"(\d+(?:\.\d+)?)px")

_TEXT_ALIGN = {"left": "l", "start": "l", "center": "m", "right": "r", "end": "r"}
_TEXT_BASELINE = {
    "alphabetic": "s",
    "top": "a",
    "hanging": "a",
    "middle": "m",
    "bottom": "d",
    "ideographic": "d",
}


def parse_color(value, fallback: RGBA) -> RGBA:
    """CSS color string to RGBA. Unparseable values keep ``fallback``."""
    if not isinstance(value, str):
        return fallback
    text = value.strip()
    m = _RGBA_FUNC.fullmatch(text)
    if m:
        r, g, b = (max(0, min(255, int(float(c)))) for c in m.groups()[:3])
        alpha = m.group(4)
        if alpha is None:
            a = 255
        elif alpha.endswith("%"):
            a = int(max(0.0, min(100.0, float(alpha[:-1]))) * 2.55)
        else:
            a = int(max(0.0, min(1.0, float(alpha))) * 255)
        return (r, g, b, a)
    if text.lower() == "transparent":
        return (0, 0, 0, 0)
    try:
        rgb = ImageColor.getrgb(text)
    except ValueError:
        logger.debug(f"Ignoring unparseable color {value!r}")
        return fallback
    if len(rgb) == 3:
        return (rgb[0], rgb[1], rgb[2], 255)
    return tuple(rgb)


def _load_font(font: str) -> ImageFont.ImageFont:
    m = _FONT_SIZE.search(font or "")
    size = float(m.group(1)) if m else 10.0
    return ImageFont.load_default(size=min(max(1.0, size), MAX_FONT_SIZE))


def _num(v, default: float = 0.0) -> float:
    if isinstance(v, bool):
        return 1.0 if v else 0.0
    if isinstance(v, (int, float)):
        return float(v)
    if v is None or v is UNDEFINED:
        return default
    try:
        return float(v)
    except (TypeError, ValueError):
        return math.nan


class _State:
    """Savable drawing state (what ctx.save/restore push and pop)."""

    def __init__(self):
        self.fill_style = "#000000"
        self.stroke_style = "#000000"
        self.fill_rgba: RGBA = (0, 0, 0, 255)
        self.stroke_rgba: RGBA = (0, 0, 0, 255)
        self.line_width = 1.0
        self.global_alpha = 1.0
        self.font = "10px sans-serif"
        self.text_align = "start"
        self.text_baseline = "alphabetic"
        self.line_cap = "butt"
        self.line_join = "miter"
        # a, b, c, d, e, f as in ctx.setTransform
        self.matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

    def copy(self) -> "_State":
        other = _State()
        other.__dict__.update(self.__dict__)
        return other


class CanvasContext(HostObject):
    """
    The ``ctx`` object handed to draw routines.

    Path coordinates are transformed when they are added, like the browser
    canvas. Text is positioned through the transform but not rotated.
    """

    sandbox_methods = {
        "fillRect": "fill_rect",
        "strokeRect": "stroke_rect",
        "clearRect": "clear_rect",
        "beginPath": "begin_path",
        "closePath": "close_path",
        "moveTo": "move_to",
        "lineTo": "line_to",
        "rect": "rect",
        "arc": "arc",
        "ellipse": "ellipse",
        "quadraticCurveTo": "quadratic_curve_to",
        "bezierCurveTo": "bezier_curve_to",
        "fill": "fill",
        "stroke": "stroke",
        "fillText": "fill_text",
        "strokeText": "stroke_text",
        "measureText": "measure_text",
        "save": "save",
        "restore": "restore",
        "translate": "translate",
        "rotate": "rotate",
        "scale": "scale",
        "setTransform": "set_transform",
        "resetTransform": "reset_transform",
    }
    sandbox_properties = {
        "fillStyle": "fill_style",
        "strokeStyle": "stroke_style",
        "lineWidth": "line_width",
        "globalAlpha": "global_alpha",
        "font": "font",
        "textAlign": "text_align",
        "textBaseline": "text_baseline",
        "lineCap": "line_cap",
        "lineJoin": "line_join",
        "canvas": "canvas_info",
    }
    sandbox_readonly = frozenset({"canvas"})

    def __init__(self, canvas: "Canvas"):
        self._canvas = canvas
        self._state = _State()
        self._stack: List[_State] = []
        self._subpaths: List[List[Point]] = []
        self._closed: List[bool] = []
        self.draw_calls = 0

    def reset(self) -> None:
        self._state = _State()
        self._stack = []
        self.begin_path()

    @property
    def canvas_info(self) -> Dict[str, float]:
        return {"width": float(self._canvas.width), "height": float(self._canvas.height)}

    # -- styles ----------------------------------------------------------

    @property
    def fill_style(self):
        return self._state.fill_style

    @fill_style.setter
    def fill_style(self, value):
        self._state.fill_rgba = parse_color(value, self._state.fill_rgba)
        self._state.fill_style = value

    @property
    def stroke_style(self):
        return self._state.stroke_style

    @stroke_style.setter
    def stroke_style(self, value):
        self._state.stroke_rgba = parse_color(value, self._state.stroke_rgba)
        self._state.stroke_style = value

    @property
    def line_width(self) -> float:
        return self._state.line_width

    @line_width.setter
    def line_width(self, value):
        v = _num(value)
        if math.isfinite(v) and v > 0:
            self._state.line_width = v

    @property
    def global_alpha(self) -> float:
        return self._state.global_alpha

    @global_alpha.setter
    def global_alpha(self, value):
        v = _num(value)
        if math.isfinite(v) and 0.0 <= v <= 1.0:
            self._state.global_alpha = v

    @property
    def font(self) -> str:
        return self._state.font

    @font.setter
    def font(self, value):
        self._state.font = str(value)

    @property
    def text_align(self) -> str:
        return self._state.text_align

    @text_align.setter
    def text_align(self, value):
        if value in _TEXT_ALIGN:
            self._state.text_align = value

    @property
    def text_baseline(self) -> str:
        return self._state.text_baseline

    @text_baseline.setter
    def text_baseline(self, value):
        if value in _TEXT_BASELINE:
            self._state.text_baseline = value

    @property
    def line_cap(self) -> str:
        return self._state.line_cap

    @line_cap.setter
    def line_cap(self, value):
        self._state.line_cap = str(value)

    @property
    def line_join(self) -> str:
        return self._state.line_join

    @line_join.setter
    def line_join(self, value):
        self._state.line_join = str(value)

    # -- transform -------------------------------------------------------

    def _apply(self, x, y) -> Point:
        a, b, c, d, e, f = self._state.matrix
        x, y = _num(x), _num(y)
        return (a * x + c * y + e, b * x + d * y + f)

    def _scale_factor(self) -> float:
        a, b, c, d, _, _ = self._state.matrix
        return math.sqrt(abs(a * d - b * c)) or 1.0

    def save(self) -> None:
        self._stack.append(self._state.copy())

    def restore(self) -> None:
        if self._stack:
            self._state = self._stack.pop()

    def translate(self, tx, ty) -> None:
        a, b, c, d, e, f = self._state.matrix
        tx, ty = _num(tx), _num(ty)
        self._state.matrix = (a, b, c, d, e + a * tx + c * ty, f + b * tx + d * ty)

    def scale(self, sx, sy=UNDEFINED) -> None:
        a, b, c, d, e, f = self._state.matrix
        sx = _num(sx, 1.0)
        sy = sx if sy is UNDEFINED else _num(sy, 1.0)
        self._state.matrix = (a * sx, b * sx, c * sy, d * sy, e, f)

    def rotate(self, angle) -> None:
        a, b, c, d, e, f = self._state.matrix
        cos_t, sin_t = math.cos(_num(angle)), math.sin(_num(angle))
        self._state.matrix = (
            a * cos_t + c * sin_t,
            b * cos_t + d * sin_t,
            c * cos_t - a * sin_t,
            d * cos_t - b * sin_t,
            e,
            f,
        )

    def set_transform(self, a=1.0, b=0.0, c=0.0, d=1.0, e=0.0, f=0.0) -> None:
        self._state.matrix = tuple(_num(v) for v in (a, b, c, d, e, f))

    def reset_transform(self) -> None:
        self._state.matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

    # -- paths -----------------------------------------------------------

    def begin_path(self) -> None:
        self._subpaths = []
        self._closed = []

    def move_to(self, x, y) -> None:
        self._subpaths.append([self._apply(x, y)])
        self._closed.append(False)

    def line_to(self, x, y) -> None:
        if not self._subpaths:
            self.move_to(x, y)
            return
        self._subpaths[-1].append(self._apply(x, y))

    def close_path(self) -> None:
        if self._subpaths:
            self._closed[-1] = True
            start = self._subpaths[-1][0]
            self._subpaths.append([start])
            self._closed.append(False)

    def rect(self, x, y, w, h) -> None:
        x, y, w, h = _num(x), _num(y), _num(w), _num(h)
        self.move_to(x, y)
        self.line_to(x + w, y)
        self.line_to(x + w, y + h)
        self.line_to(x, y + h)
        self.close_path()

    def _arc_points(self, cx, cy, rx, ry, rotation, start, end, ccw) -> List[Point]:
        tau = 2 * math.pi
        if not ccw:
            if end - start >= tau:
                end = start + tau
            else:
                while end < start:
                    end += tau
        else:
            if start - end >= tau:
                end = start - tau
            else:
                while end > start:
                    end -= tau
        sweep = end - start
        radius = max(abs(rx), abs(ry)) * self._scale_factor()
        segments = int(min(256, max(8, abs(sweep) * radius / 4)))
        cos_r, sin_r = math.cos(rotation), math.sin(rotation)
        points = []
        for i in range(segments + 1):
            t = start + sweep * i / segments
            px, py = rx * math.cos(t), ry * math.sin(t)
            points.append(
                self._apply(cx + px * cos_r - py * sin_r, cy + px * sin_r + py * cos_r)
            )
        return points

    def arc(self, x, y, radius, start_angle, end_angle, counterclockwise=False) -> None:
        r = _num(radius)
        if r < 0:
            raise ScriptRuntimeError(f"The radius provided ({r}) is negative")
        self._add_curve(
            self._arc_points(
                _num(x), _num(y), r, r, 0.0,
                _num(start_angle), _num(end_angle), bool(counterclockwise),
            )
        )

    def ellipse(self, x, y, rx, ry, rotation, start_angle, end_angle, counterclockwise=False) -> None:
        rx, ry = _num(rx), _num(ry)
        if rx < 0 or ry < 0:
            raise ScriptRuntimeError("The radii provided are negative")
        self._add_curve(
            self._arc_points(
                _num(x), _num(y), rx, ry, _num(rotation),
                _num(start_angle), _num(end_angle), bool(counterclockwise),
            )
        )

    def _add_curve(self, points: List[Point]) -> None:
        if not all(math.isfinite(v) for p in points for v in p):
            return
        if not self._subpaths:
            self._subpaths.append([])
            self._closed.append(False)
        self._subpaths[-1].extend(points)

    def quadratic_curve_to(self, cpx, cpy, x, y) -> None:
        if not self._subpaths:
            self.move_to(cpx, cpy)
        p0 = self._subpaths[-1][-1]
        p1, p2 = self._apply(cpx, cpy), self._apply(x, y)
        pts = []
        for i in range(1, 17):
            t = i / 16
            u = 1 - t
            pts.append((
                u * u * p0[0] + 2 * u * t * p1[0] + t * t * p2[0],
                u * u * p0[1] + 2 * u * t * p1[1] + t * t * p2[1],
            ))
        self._subpaths[-1].extend(pts)

    def bezier_curve_to(self, cp1x, cp1y, cp2x, cp2y, x, y) -> None:
        if not self._subpaths:
            self.move_to(cp1x, cp1y)
        p0 = self._subpaths[-1][-1]
        p1, p2, p3 = self._apply(cp1x, cp1y), self._apply(cp2x, cp2y), self._apply(x, y)
        pts = []
        for i in range(1, 25):
            t = i / 24
            u = 1 - t
            pts.append((
                u ** 3 * p0[0] + 3 * u * u * t * p1[0] + 3 * u * t * t * p2[0] + t ** 3 * p3[0],
                u ** 3 * p0[1] + 3 * u * u * t * p1[1] + 3 * u * t * t * p2[1] + t ** 3 * p3[1],
            ))
        self._subpaths[-1].extend(pts)

    # -- painting --------------------------------------------------------

    def _color(self, rgba: RGBA) -> RGBA:
        r, g, b, a = rgba
        return (r, g, b, int(a * self._state.global_alpha))

    def _stroke_width(self) -> int:
        return max(1, int(round(self._state.line_width * self._scale_factor())))

    def fill(self) -> None:
        color = self._color(self._state.fill_rgba)
        draw = self._canvas.draw
        for pts in self._subpaths:
            if len(pts) >= 3:
                draw.polygon(pts, fill=color)
        self.draw_calls += 1

    def stroke(self) -> None:
        color = self._color(self._state.stroke_rgba)
        width = self._stroke_width()
        draw = self._canvas.draw
        for pts, closed in zip(self._subpaths, self._closed):
            if len(pts) >= 2:
                line = pts + [pts[0]] if closed else pts
                draw.line(line, fill=color, width=width, joint="curve")
        self.draw_calls += 1

    def _rect_points(self, x, y, w, h) -> List[Point]:
        x, y, w, h = _num(x), _num(y), _num(w), _num(h)
        return [
            self._apply(x, y),
            self._apply(x + w, y),
            self._apply(x + w, y + h),
            self._apply(x, y + h),
        ]

    def fill_rect(self, x, y, w, h) -> None:
        pts = self._rect_points(x, y, w, h)
        if all(math.isfinite(v) for p in pts for v in p):
            self._canvas.draw.polygon(pts, fill=self._color(self._state.fill_rgba))
        self.draw_calls += 1

    def stroke_rect(self, x, y, w, h) -> None:
        pts = self._rect_points(x, y, w, h)
        if all(math.isfinite(v) for p in pts for v in p):
            self._canvas.draw.line(
                pts + [pts[0]], fill=self._color(self._state.stroke_rgba),
                width=self._stroke_width(),
            )
        self.draw_calls += 1

    def clear_rect(self, x, y, w, h) -> None:
        pts = self._rect_points(x, y, w, h)
        if all(math.isfinite(v) for p in pts for v in p):
            self._canvas.draw.polygon(pts, fill=BACKGROUND + (255,))

    def _text(self, text, x, y, stroke: bool) -> None:
        font = _load_font(self._state.font)
        anchor = _TEXT_ALIGN[self._state.text_align] + _TEXT_BASELINE[self._state.text_baseline]
        px, py = self._apply(x, y)
        if not (math.isfinite(px) and math.isfinite(py)):
            return
        label = text if isinstance(text, str) else _display(text)
        if stroke:
            color = self._color(self._state.stroke_rgba)
            self._canvas.draw.text(
                (px, py), label, font=font, anchor=anchor, fill=(0, 0, 0, 0),
                stroke_width=max(1, int(self._state.line_width)), stroke_fill=color,
            )
        else:
            self._canvas.draw.text(
                (px, py), label, font=font, anchor=anchor,
                fill=self._color(self._state.fill_rgba),
            )
        self.draw_calls += 1

    def fill_text(self, text, x, y, max_width=UNDEFINED) -> None:
        self._text(text, x, y, stroke=False)

    def stroke_text(self, text, x, y, max_width=UNDEFINED) -> None:
        self._text(text, x, y, stroke=True)

    def measure_text(self, text) -> Dict[str, float]:
        font = _load_font(self._state.font)
        label = text if isinstance(text, str) else _display(text)
        return {"width": float(font.getlength(label))}


def _display(value) -> str:
    if isinstance(value, float) and value == int(value):
        return str(int(value))
    return str(value)


class Canvas:
    """RGB drawing surface owned by a 2D visualization."""

    def __init__(self, width: int = 800, height: int = 600):
        self._image = Image.new("RGB", (int(width), int(height)), BACKGROUND)
        self._draw = ImageDraw.Draw(self._image, "RGBA")
        self.context = CanvasContext(self)

    @property
    def width(self) -> int:
        return self._image.width

    @property
    def height(self) -> int:
        return self._image.height

    @property
    def size(self) -> Size:
        return Size(self.width, self.height)

    @property
    def image(self) -> Image.Image:
        return self._image

    @property
    def draw(self) -> ImageDraw.ImageDraw:
        return self._draw

    def resize(self, width: int, height: int) -> None:
        """Reallocate the surface. Contents are discarded, like a browser canvas."""
        width, height = int(width), int(height)
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas size must be positive, got {width}x{height}")
        self._image = Image.new("RGB", (width, height), BACKGROUND)
        self._draw = ImageDraw.Draw(self._image, "RGBA")
        self.context.reset()

    def clear(self) -> None:
        self._draw.rectangle((0, 0, self.width, self.height), fill=BACKGROUND)

    def draw_error(self, message: str = "") -> None:
        """Paint the compile-failure surface: red "Script Error" at (50, 50)."""
        self.clear()
        self._draw.text((50, 50), "Script Error", font=_load_font("20px"), fill=ERROR_COLOR)
        if message:
            self._draw.text(
                (50, 80), message[:120], font=_load_font("14px"), fill=ERROR_COLOR
            )

    def pixel(self, x: int, y: int) -> Tuple[int, int, int]:
        return self._image.getpixel((int(x), int(y)))

    def to_bgr(self) -> np.ndarray:
        """Surface as an OpenCV BGR array."""
        return cv2.cvtColor(np.asarray(self._image), cv2.COLOR_RGB2BGR)


class Viewport:
    """Host display area; calls listeners with (width, height) on resize."""

    def __init__(self, width: int, height: int):
        self.size = Size(width, height)
        self._listeners: List[Callable[[int, int], None]] = []

    def add_resize_listener(self, listener: Callable[[int, int], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_resize_listener(self, listener: Callable[[int, int], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def resize(self, width: int, height: int) -> None:
        self.size = Size(width, height)
        for listener in list(self._listeners):
            listener(int(width), int(height))


def draw_blocks(
    frame: Frame,
    blocks: Iterable[Block],
    selected_ids: Sequence[str] = (),
    color: Tuple[int, int, int] = (0, 255, 255),
    selected_color: Tuple[int, int, int] = (0, 255, 0),
) -> np.ndarray:
    """
    Overlay block outlines on a copy of ``frame`` (BGR).

    Selected blocks get a thicker outline in ``selected_color``.
    """
    image = frame.image.copy()
    size = frame.size
    for block in blocks:
        x0, y0, x1, y1 = (int(round(v)) for v in bbox_to_canvas(block.bbox, size))
        selected = block.id in selected_ids
        cv2.rectangle(
            image, (x0, y0), (x1, y1),
            selected_color if selected else color,
            3 if selected else 1,
        )
    return image
