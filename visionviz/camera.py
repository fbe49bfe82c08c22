"""
Camera: exclusive owner of the OpenCV capture device.

The handle is opened once and released exactly once; reads after release
or a failed read raise CameraError.
"""

import logging
import threading
from typing import Optional

import cv2

from visionviz.errors import CameraError
from visionviz.frames import Frame

logger = logging.getLogger(__name__)


class Camera:
    """Thin wrapper over ``cv2.VideoCapture``."""

    def __init__(self, index: int = 0, width: int = 1920, height: int = 1080):
        self.index = index
        self.requested_width = width
        self.requested_height = height
        self._cap: Optional[cv2.VideoCapture] = None
        self._released = False
        # Reads arrive from executor threads
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._cap is not None and not self._released

    def open(self) -> None:
        """Open the device. Raises CameraError when it cannot be opened."""
        if self._released:
            raise CameraError(f"Camera {self.index} was already released")
        if self._cap is not None:
            return

        cap = cv2.VideoCapture(self.index)
        if not cap.isOpened():
            cap.release()
            raise CameraError(f"Could not open camera {self.index}")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.requested_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.requested_height)
        # Keep the newest frame only
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        self._cap = cap

    def read(self) -> Frame:
        with self._lock:
            if not self.is_open:
                raise CameraError("Camera is not open")
            ok, image = self._cap.read()
        if not ok or image is None:
            raise CameraError(f"Camera {self.index} stopped delivering frames")
        return Frame(image=image)

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            if self._cap is not None:
                self._cap.release()
                logger.info(f"Camera {self.index} released")
