"""
Capture Loop: camera lifecycle, frame snapshotting and detection scheduling.

Two operating modes share one detection slot:

- continuous: ``tick()`` (driven by ``run()`` every ``scan_interval_s``)
  snapshots the live frame and submits it when scanning is enabled and no
  detection is outstanding; the response overwrites the displayed blocks.
- capture-then-freeze: ``capture()`` freezes one frame into a
  CaptureSession and runs exactly one detection for it.

Single-flight: at most one detection call is outstanding. A tick or
capture arriving while one is in flight is dropped, not queued.

Staleness: every retake/capture bumps a generation counter; a result whose
generation is no longer current is discarded.

Failure policy: a failed, malformed or empty detection clears the
displayed blocks.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from visionviz.camera import Camera
from visionviz.console import LogConsole
from visionviz.errors import CameraError, DetectionError, MalformedResponseError
from visionviz.frames import Frame, preprocess
from visionviz.schema import Block
from visionviz.selection import SelectionEngine

logger = logging.getLogger(__name__)


class TextDetector(Protocol):
    """Submit a frame, receive ordered, normalized text blocks."""

    async def detect(self, frame: Frame) -> List[Block]: ...


@dataclass
class CaptureSession:
    """A frozen frame with its blocks and selection."""

    generation: int
    frame: Frame
    selection: SelectionEngine = field(default_factory=SelectionEngine)
    detected: bool = False

    @property
    def blocks(self) -> List[Block]:
        return self.selection.blocks


class CaptureLoop:
    """
    Owns the camera handle and the single detection slot.

    Use ``await start()`` / ``await stop()`` (or ``async with``) around it.
    """

    def __init__(
        self,
        camera: Camera,
        detector: TextDetector,
        console: Optional[LogConsole] = None,
        scan_interval_s: float = 1.5,
        grayscale: bool = False,
        contrast: float = 1.0,
    ):
        self.camera = camera
        self.detector = detector
        self.console = console or LogConsole()
        self.scan_interval_s = scan_interval_s
        self.grayscale = grayscale
        self.contrast = contrast

        self._generation = 0
        self._inflight = False
        self._blocks: List[Block] = []
        self._session: Optional[CaptureSession] = None
        self._latest_frame: Optional[Frame] = None
        self._scanning = True
        self._degraded = False
        self._started = False
        self._stopped = False
        self._run_task: Optional[asyncio.Task] = None
        self._detect_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def blocks(self) -> List[Block]:
        """Currently displayed blocks."""
        return list(self._blocks)

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def frozen(self) -> bool:
        return self._session is not None

    @property
    def busy(self) -> bool:
        """True while a detection call is outstanding."""
        return self._inflight

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def scanning(self) -> bool:
        return self._scanning and not self._degraded

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def displayed_frame(self) -> Optional[Frame]:
        if self._session is not None:
            return self._session.frame
        return self._latest_frame

    def set_scanning(self, enabled: bool) -> None:
        self._scanning = bool(enabled)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Open the camera. Returns False (degraded) when it cannot be opened."""
        if self._started:
            return not self._degraded
        self._started = True

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.camera.open)
            frame = await self.snapshot()
        except CameraError as e:
            self._enter_degraded(e)
            return False

        self.console.info(f"Camera Ready: {frame.width}x{frame.height}")
        return True

    async def stop(self) -> None:
        """Stop scanning and release the camera exactly once."""
        if self._stopped:
            return
        self._stopped = True
        self._generation += 1

        for task in (self._run_task, self._detect_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._run_task = None
        self._detect_task = None
        self.camera.release()

    async def __aenter__(self) -> "CaptureLoop":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def start_scanning(self) -> asyncio.Task:
        """Spawn the continuous-mode timer task."""
        if self._run_task is None or self._run_task.done():
            self._run_task = asyncio.create_task(self.run())
        return self._run_task

    async def run(self) -> None:
        """Tick every ``scan_interval_s`` until stopped or degraded."""
        while not self._stopped and not self._degraded:
            self.tick()
            await asyncio.sleep(self.scan_interval_s)

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    async def snapshot(self) -> Frame:
        """Read the live frame. Camera failure degrades the loop and re-raises."""
        if self._degraded:
            raise CameraError("Camera unavailable")
        loop = asyncio.get_running_loop()
        try:
            frame = await loop.run_in_executor(None, self.camera.read)
        except CameraError as e:
            self._enter_degraded(e)
            raise
        self._latest_frame = frame
        return frame

    def _enter_degraded(self, error: Exception) -> None:
        if self._degraded:
            return
        self._degraded = True
        self._scanning = False
        self.console.error(f"Failed to access camera: {error}")

    # ------------------------------------------------------------------
    # Continuous mode
    # ------------------------------------------------------------------

    def tick(self) -> bool:
        """
        One timer tick. Returns True when a detection was submitted.

        Dropped (returns False) when scanning is off, a frame is frozen, the
        camera is degraded, or a detection is already outstanding.
        """
        if not self.scanning or self._session is not None or self._stopped:
            return False
        if self._inflight:
            return False

        self._inflight = True
        self._detect_task = asyncio.create_task(self._scan_once(self._generation))
        return True

    async def _scan_once(self, generation: int) -> None:
        try:
            frame = await self.snapshot()
            blocks = await self._run_detection(frame)
            if self._apply(generation, blocks):
                logger.debug(f"Scan: {len(blocks)} blocks")
        except CameraError:
            pass  # already logged by _enter_degraded
        except Exception as e:
            self.console.error(f"Scan failed: {e}")
            self._apply(generation, [])
        finally:
            self._inflight = False

    # ------------------------------------------------------------------
    # Capture-then-freeze mode
    # ------------------------------------------------------------------

    async def capture(self) -> Optional[CaptureSession]:
        """
        Freeze the live frame and run exactly one detection for it.

        Returns:
            The new CaptureSession, or None when the trigger was dropped
            (detection outstanding), the camera is degraded, or the session
            was retaken before its result arrived.
        """
        if self._degraded:
            self.console.error("Camera unavailable")
            return None
        if self._inflight:
            logger.debug("Capture dropped: detection in flight")
            return None

        self._inflight = True
        try:
            self.console.info("Capturing image...")
            try:
                frame = await self.snapshot()
            except CameraError:
                return None

            self._generation += 1
            generation = self._generation
            session = CaptureSession(generation=generation, frame=frame.copy())
            self._session = session
            self._blocks = []

            self.console.info("Analyzing text...")
            blocks = await self._run_detection(session.frame)

            if not self._apply(generation, blocks):
                self.console.info("Discarded detection result from a retaken capture")
                return None

            session.detected = True
            if blocks:
                self.console.success(f"Detected {len(blocks)} text blocks")
            else:
                self.console.info("No text found")
            return session
        finally:
            self._inflight = False

    def retake(self) -> None:
        """Drop the frozen frame, its blocks and selection; resume live view."""
        self._generation += 1
        if self._session is not None:
            self._session.selection.clear()
        self._session = None
        self._blocks = []
        self.console.info("Ready to scan")

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    async def _run_detection(self, frame: Frame) -> List[Block]:
        """One detection call. Failures are logged and yield an empty list."""
        try:
            prepared = preprocess(frame, grayscale=self.grayscale, contrast=self.contrast)
            return list(await self.detector.detect(prepared))
        except MalformedResponseError as e:
            self.console.error(f"Malformed detection response: {e}")
        except DetectionError as e:
            self.console.error(f"OCR API failed: {e}")
        except Exception as e:
            logger.exception("Unexpected detection failure")
            self.console.error(f"Detection failed: {e}")
        return []

    def _apply(self, generation: int, blocks: List[Block]) -> bool:
        """Replace the displayed blocks if ``generation`` is still current."""
        if generation != self._generation:
            return False
        self._blocks = list(blocks)
        if self._session is not None and self._session.generation == generation:
            self._session.selection.replace_blocks(blocks)
        return True
