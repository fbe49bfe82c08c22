"""
Coordinate spaces and conversions.

Three spaces are in play:

- source pixels: the captured frame (e.g. 1920x1080 camera image)
- normalized: [0, 1] relative to width/height, where Blocks live
- canvas pixels: the drawing surface the blocks are overlaid on

Pointer events arrive in *display* pixels (the size the canvas is shown
at), which is generally not the canvas pixel size. They must be scaled by
``canvas / display`` before normalizing.
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

from visionviz.schema import BoundingBox

# Detection collaborators answer on a 0-1000 grid.
NATIVE_BOX_SCALE = 1000.0


@dataclass(frozen=True)
class Size:
    """Width/height pair in some pixel space."""

    width: float
    height: float

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Size must be positive, got {self.width}x{self.height}")


def _clamp01(v: float) -> float:
    return max(0.0, min(1.0, v))


def source_to_normalized(x: float, y: float, source: Size) -> Tuple[float, float]:
    return x / source.width, y / source.height


def normalized_to_source(x: float, y: float, source: Size) -> Tuple[float, float]:
    return x * source.width, y * source.height


def normalized_to_canvas(x: float, y: float, canvas: Size) -> Tuple[float, float]:
    return x * canvas.width, y * canvas.height


def canvas_to_normalized(x: float, y: float, canvas: Size) -> Tuple[float, float]:
    return x / canvas.width, y / canvas.height


def display_to_canvas(
    x: float, y: float, display: Size, canvas: Size
) -> Tuple[float, float]:
    """Scale a display-space point into canvas pixels."""
    scale_x = canvas.width / display.width
    scale_y = canvas.height / display.height
    return x * scale_x, y * scale_y


def pointer_to_normalized(
    x: float,
    y: float,
    display: Size,
    canvas: Size,
    origin: Tuple[float, float] = (0.0, 0.0),
) -> Tuple[float, float]:
    """
    Convert a pointer event to normalized coordinates.

    Args:
        x, y: Pointer position in display pixels (e.g. window coordinates)
        display: Size the canvas is displayed at
        canvas: Pixel size of the canvas backing store
        origin: Display-space position of the canvas' top-left corner

    Returns:
        (x, y) in [0, 1] space. Points outside the canvas fall outside [0, 1].
    """
    cx, cy = display_to_canvas(x - origin[0], y - origin[1], display, canvas)
    return canvas_to_normalized(cx, cy, canvas)


def bbox_to_canvas(bbox: BoundingBox, canvas: Size) -> Tuple[float, float, float, float]:
    """Return (x0, y0, x1, y1) in canvas pixels."""
    x0, y0 = normalized_to_canvas(bbox.x0, bbox.y0, canvas)
    x1, y1 = normalized_to_canvas(bbox.x1, bbox.y1, canvas)
    return x0, y0, x1, y1


def pixel_box_to_bbox(
    x0: float, y0: float, x1: float, y1: float, source: Size
) -> BoundingBox:
    """Normalize a source-pixel box, reordering corners and clamping to the frame."""
    nx0, ny0 = source_to_normalized(min(x0, x1), min(y0, y1), source)
    nx1, ny1 = source_to_normalized(max(x0, x1), max(y0, y1), source)
    return BoundingBox(
        x0=_clamp01(nx0), y0=_clamp01(ny0), x1=_clamp01(nx1), y1=_clamp01(ny1)
    )


def normalize_box_2d(
    box_2d: Sequence[float], scale: float = NATIVE_BOX_SCALE
) -> BoundingBox:
    """
    Convert a collaborator box ``[ymin, xmin, ymax, xmax]`` on ``scale``.

    Raises:
        ValueError: box does not have four numeric entries
    """
    if isinstance(box_2d, (str, bytes)) or len(box_2d) != 4:
        raise ValueError(f"box_2d must have 4 entries, got {box_2d!r}")
    try:
        ymin, xmin, ymax, xmax = (float(v) for v in box_2d)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"box_2d entries must be numeric, got {box_2d!r}")
    if not all(math.isfinite(v) for v in (ymin, xmin, ymax, xmax)):
        raise ValueError(f"box_2d entries must be finite, got {box_2d!r}")
    return pixel_box_to_bbox(xmin, ymin, xmax, ymax, Size(scale, scale))
