"""Frame snapshots, optional preprocessing, and wire encoding."""

import base64
import time
from dataclasses import dataclass, field

import cv2
import numpy as np

from visionviz.geometry import Size


@dataclass
class Frame:
    """One camera snapshot (BGR, as OpenCV delivers it)."""

    image: np.ndarray
    captured_at: float = field(default_factory=time.time)

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def size(self) -> Size:
        return Size(self.width, self.height)

    def copy(self) -> "Frame":
        return Frame(image=self.image.copy(), captured_at=self.captured_at)


def preprocess(frame: Frame, grayscale: bool = False, contrast: float = 1.0) -> Frame:
    """
    Grayscale and/or contrast-stretch a frame for detection.

    Output keeps the input's width, height and channel count so that
    normalized coordinates stay valid against the original.
    """
    img = frame.image
    if grayscale and img.ndim == 3:
        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        img = cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)
    if contrast != 1.0:
        img = cv2.convertScaleAbs(img, alpha=contrast, beta=0)
    if img is frame.image:
        return frame
    return Frame(image=img, captured_at=frame.captured_at)


def encode_jpeg_b64(frame: Frame, quality: int = 90) -> str:
    """JPEG-encode a frame and return base64 text."""
    ok, buf = cv2.imencode(".jpg", frame.image, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok:
        raise ValueError(f"JPEG encoding failed for {frame.width}x{frame.height} frame")
    return base64.b64encode(buf.tobytes()).decode("utf-8")
