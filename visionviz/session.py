"""
VisionSession: the scan -> select -> visualize state machine.

States:
    IDLE         live view, continuous scanning
    CAPTURED     a frozen frame with its detected blocks
    SELECTED     at least one block selected (scanning paused)
    VISUALIZING  a 2D animation or 3D asset is active

``reset()`` / ``retake()`` return to IDLE from anywhere.

Usage:
    async with VisionSession.from_settings(Settings.from_env()) as session:
        await session.capture()
        session.select_at(0.4, 0.2)
        await session.visualize()
"""

import logging
from enum import Enum
from typing import Optional, Tuple

from visionviz.camera import Camera
from visionviz.canvas import Canvas, Viewport
from visionviz.capture import CaptureLoop, CaptureSession
from visionviz.config import Settings
from visionviz.console import LogConsole
from visionviz.errors import MissingEndpointError, PlanningError, RenderError
from visionviz.geometry import Size, pointer_to_normalized
from visionviz.render_client import RenderClient
from visionviz.schema import Block
from visionviz.visualization import Visualization, VisualizationDispatcher
from visionviz.vlm import VLMRouter

logger = logging.getLogger(__name__)

MISSING_ENDPOINT_MESSAGE = (
    "Missing configuration: 3D render endpoint is not set (RENDER_ENDPOINT)"
)


class SessionState(str, Enum):
    IDLE = "idle"
    CAPTURED = "captured"
    SELECTED = "selected"
    VISUALIZING = "visualizing"


class VisionSession:
    """One live capture/visualize session over a camera."""

    def __init__(
        self,
        capture_loop: CaptureLoop,
        dispatcher: VisualizationDispatcher,
        console: Optional[LogConsole] = None,
    ):
        self.capture_loop = capture_loop
        self.dispatcher = dispatcher
        self.console = console or capture_loop.console
        self._capture_pending = False
        self._visualize_pending = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        console: Optional[LogConsole] = None,
        camera: Optional[Camera] = None,
        viewport: Optional[Viewport] = None,
    ) -> "VisionSession":
        console = console or LogConsole()
        router = VLMRouter.from_settings(settings)
        camera = camera or Camera(
            index=settings.camera_index,
            width=settings.camera_width,
            height=settings.camera_height,
        )
        loop = CaptureLoop(
            camera,
            router,
            console=console,
            scan_interval_s=settings.scan_interval_s,
            grayscale=settings.preprocess_grayscale,
            contrast=settings.preprocess_contrast,
        )
        viewport = viewport or Viewport(settings.camera_width, settings.camera_height)
        dispatcher = VisualizationDispatcher(
            router,
            RenderClient(
                settings.render_endpoint,
                timeout=settings.http_timeout_s,
                verbose=settings.verbose,
            ),
            canvas=Canvas(int(viewport.size.width), int(viewport.size.height)),
            viewport=viewport,
            console=console,
            fps=settings.animation_fps,
        )
        return cls(loop, dispatcher, console=console)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self.dispatcher.current is not None:
            return SessionState.VISUALIZING
        session = self.capture_loop.session
        if session is None:
            return SessionState.IDLE
        if session.selection.has_selection:
            return SessionState.SELECTED
        return SessionState.CAPTURED

    @property
    def capture_session(self) -> Optional[CaptureSession]:
        return self.capture_loop.session

    @property
    def visualization(self) -> Optional[Visualization]:
        return self.dispatcher.current

    @property
    def degraded(self) -> bool:
        return self.capture_loop.degraded

    @property
    def pending(self) -> bool:
        return self._capture_pending or self._visualize_pending

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, scan: bool = True) -> bool:
        ok = await self.capture_loop.start()
        if ok and scan:
            self.capture_loop.start_scanning()
        return ok

    async def close(self) -> None:
        self.dispatcher.teardown()
        await self.capture_loop.stop()

    async def __aenter__(self) -> "VisionSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def capture(self) -> Optional[CaptureSession]:
        """Freeze the live frame and detect its text. Rejected while busy."""
        if self.pending:
            self.console.error("Busy: wait for the current request to finish")
            return None
        if self.capture_loop.frozen:
            self.console.info("Retake before capturing a new image")
            return None

        self._capture_pending = True
        try:
            return await self.capture_loop.capture()
        finally:
            self._capture_pending = False

    def select_at(self, x: float, y: float) -> Optional[Block]:
        """Toggle the block under normalized (x, y) in the frozen capture."""
        session = self.capture_loop.session
        if session is None or not session.detected:
            return None

        block = session.selection.toggle_at(x, y)
        if block is None:
            return None

        if session.selection.is_selected(block.id):
            self.console.info(f"Selected: {block.text}")
        else:
            self.console.info(f"Deselected: {block.text}")
        if session.selection.has_selection:
            self.capture_loop.set_scanning(False)
        return block

    def click(
        self,
        x: float,
        y: float,
        display: Size,
        canvas: Size,
        origin: Tuple[float, float] = (0.0, 0.0),
    ) -> Optional[Block]:
        """Pointer event in display pixels."""
        nx, ny = pointer_to_normalized(x, y, display, canvas, origin)
        return self.select_at(nx, ny)

    async def visualize(self, run: bool = True) -> Optional[Visualization]:
        """
        Plan and start a visualization for the selected text.

        Returns None (state unchanged) when rejected or when any step fails.
        """
        if self.pending:
            self.console.error("Busy: wait for the current request to finish")
            return None

        session = self.capture_loop.session
        text = session.selection.selected_text() if session is not None else ""
        if not text.strip():
            self.console.error("Select text before visualizing")
            return None

        generation = self.capture_loop.generation
        self._visualize_pending = True
        self.console.info(f'Visualizing "{text}"...')
        try:
            visualization = await self.dispatcher.build(text)
        except MissingEndpointError:
            self.console.error(MISSING_ENDPOINT_MESSAGE)
            return None
        except RenderError as e:
            self.console.error(f"3D rendering failed: {e}")
            return None
        except PlanningError as e:
            self.console.error(f"Visualization planning failed: {e}")
            return None
        finally:
            self._visualize_pending = False

        if generation != self.capture_loop.generation:
            visualization.teardown()
            self.console.info("Discarded visualization for a reset session")
            return None
        return self.dispatcher.activate(visualization, run=run)

    def reset(self) -> None:
        """Tear down any visualization, drop the capture and resume scanning."""
        self.dispatcher.teardown()
        self.capture_loop.retake()
        if not self.capture_loop.degraded:
            self.capture_loop.set_scanning(True)
        self.console.info("System reset. Resume scanning.")

    def retake(self) -> None:
        self.reset()

    def set_render_endpoint(self, endpoint: Optional[str]) -> None:
        self.dispatcher.render_client.endpoint = endpoint
        if self.dispatcher.render_client.configured:
            self.console.info(f"3D render endpoint set: {self.dispatcher.render_client.endpoint}")
        else:
            self.console.info("3D render endpoint cleared")
