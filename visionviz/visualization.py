"""
Visualization Dispatcher: turn selected text into a running visualization.

One planning call decides the mode:
- 2D: the script is compiled in the sandbox and driven frame-by-frame on a
  Canvas at a fixed rate
- 3D: the script is sent to the render endpoint and the returned asset is
  held in a local AssetHandle until teardown

At most one visualization is active; activating a new one tears the
previous one down first.
"""

import asyncio
import logging
import os
import tempfile
from typing import Optional, Protocol, Union

from visionviz.canvas import Canvas, Viewport
from visionviz.console import LogConsole
from visionviz.errors import ScriptCompileError, ScriptRuntimeError
from visionviz.render_client import RenderClient
from visionviz.sandbox import DEFAULT_MAX_STEPS, DrawRoutine, compile_script
from visionviz.schema import VisualizationMode, VisualizationPlan

logger = logging.getLogger(__name__)


class Planner(Protocol):
    async def plan(self, text: str) -> VisualizationPlan: ...


class AssetHandle:
    """
    A 3D asset written to a local temp file.

    ``release()`` deletes the file and is safe to call more than once.
    """

    def __init__(self, data: bytes, suffix: str = ".glb"):
        with tempfile.NamedTemporaryFile(
            mode="wb", suffix=suffix, prefix="visionviz_", delete=False
        ) as f:
            f.write(data)
            self.path = f.name
        self.size = len(data)
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def read_bytes(self) -> bytes:
        if self._released:
            raise ValueError("Asset has been released")
        with open(self.path, "rb") as f:
            return f.read()

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            logger.debug(f"Asset already removed: {self.path}")

    def __enter__(self) -> "AssetHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class Visualization2D:
    """Drives a compiled draw routine on a canvas at ``fps``."""

    mode = VisualizationMode.TWO_D

    def __init__(
        self,
        plan: VisualizationPlan,
        canvas: Canvas,
        viewport: Optional[Viewport] = None,
        console: Optional[LogConsole] = None,
        fps: float = 30.0,
        max_steps: int = DEFAULT_MAX_STEPS,
    ):
        self.plan = plan
        self.canvas = canvas
        self.viewport = viewport
        self.console = console or LogConsole()
        self.fps = fps
        self.max_steps = max_steps

        self.routine: Optional[DrawRoutine] = None
        self.frame_count = 0
        self.runtime_errors = 0
        self.compile_error: Optional[ScriptCompileError] = None
        self._last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._torn_down = False

    @property
    def active(self) -> bool:
        return self.routine is not None and not self._torn_down

    def start(self, run: bool = True) -> bool:
        """
        Compile the script and (optionally) start the frame loop.

        On a compile error the canvas shows the error surface and the loop
        is never started.
        """
        try:
            self.routine = compile_script(self.plan.script, max_steps=self.max_steps)
        except ScriptCompileError as e:
            self.compile_error = e
            self.canvas.draw_error(str(e))
            self.console.error(f"Script Error: {e}")
            return False

        if self.viewport is not None:
            self.viewport.add_resize_listener(self._on_resize)
            size = self.viewport.size
            if (int(size.width), int(size.height)) != (self.canvas.width, self.canvas.height):
                self.canvas.resize(int(size.width), int(size.height))
        if run:
            self._task = asyncio.create_task(self._run())
            self._task.add_done_callback(_log_task_failure)
        return True

    def tick(self) -> bool:
        """
        Draw one frame. Returns False when the invocation raised.

        The surface is cleared first; frame_count advances even when the
        routine fails, so the next frame is drawn regardless.
        """
        if not self.active:
            return False
        self.canvas.clear()
        frame = self.frame_count
        self.frame_count += 1
        try:
            self.routine(self.canvas.context, self.canvas.width, self.canvas.height, frame)
        except ScriptRuntimeError as e:
            self.runtime_errors += 1
            message = str(e)
            logger.warning(f"Frame {frame}: {message}")
            if message != self._last_error:
                self.console.error(f"Runtime error in animation: {message}")
            self._last_error = message
            return False
        self._last_error = None
        return True

    async def _run(self) -> None:
        interval = 1.0 / self.fps
        while self.active:
            try:
                self.tick()
            except Exception as e:
                self.runtime_errors += 1
                logger.exception(f"Frame {self.frame_count - 1} failed outside the script: {e}")
            await asyncio.sleep(interval)

    def _on_resize(self, width: int, height: int) -> None:
        self.canvas.resize(width, height)

    def teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if self.viewport is not None:
            self.viewport.remove_resize_listener(self._on_resize)
        if self.routine is not None:
            self.routine.revoke()


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Animation loop stopped: {error!r}")


class Visualization3D:
    """Holds the rendered asset until teardown."""

    mode = VisualizationMode.THREE_D

    def __init__(self, plan: VisualizationPlan, asset: AssetHandle):
        self.plan = plan
        self.asset = asset

    @property
    def active(self) -> bool:
        return not self.asset.released

    def teardown(self) -> None:
        self.asset.release()


Visualization = Union[Visualization2D, Visualization3D]


class VisualizationDispatcher:
    """
    Plans, builds and activates visualizations.

    ``build`` does the network work and returns an inactive visualization;
    ``activate`` makes it current. ``visualize`` does both.
    """

    def __init__(
        self,
        planner: Planner,
        render_client: RenderClient,
        canvas: Optional[Canvas] = None,
        viewport: Optional[Viewport] = None,
        console: Optional[LogConsole] = None,
        fps: float = 30.0,
    ):
        self.planner = planner
        self.render_client = render_client
        self.viewport = viewport
        if canvas is None:
            if viewport is not None:
                canvas = Canvas(int(viewport.size.width), int(viewport.size.height))
            else:
                canvas = Canvas()
        self.canvas = canvas
        self.console = console or LogConsole()
        self.fps = fps
        self._current: Optional[Visualization] = None

    @property
    def current(self) -> Optional[Visualization]:
        return self._current

    async def build(self, text: str) -> Visualization:
        """
        Plan ``text`` and prepare (but do not start) its visualization.

        Raises:
            PlanningError: planning call failed or the plan was invalid
            MissingEndpointError: 3D chosen but no endpoint is configured
            RenderError: 3D rendering failed
        """
        plan = await self.planner.plan(text)
        reason = f" ({plan.rationale})" if plan.rationale else ""
        self.console.info(f"Decision: {plan.mode.value}{reason}")

        if plan.mode == VisualizationMode.TWO_D:
            return Visualization2D(
                plan, self.canvas, viewport=self.viewport, console=self.console, fps=self.fps
            )

        self.console.info("Sending to 3D Renderer...")
        data = await self.render_client.render(plan.script)
        return Visualization3D(plan, AssetHandle(data))

    def activate(self, visualization: Visualization, run: bool = True) -> Visualization:
        """Tear down the current visualization and start ``visualization``."""
        self.teardown()
        self._current = visualization
        if isinstance(visualization, Visualization2D):
            visualization.start(run=run)
        else:
            self.console.success("3D Model received and loaded")
        return visualization

    async def visualize(self, text: str, run: bool = True) -> Visualization:
        return self.activate(await self.build(text), run=run)

    def teardown(self) -> None:
        if self._current is not None:
            self._current.teardown()
            self._current = None
